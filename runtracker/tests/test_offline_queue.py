"""
Tests for OfflineActionQueue: ordering, retry/drop accounting, persistence
across restarts, connectivity gating and teardown.
"""

from __future__ import annotations

import asyncio
import tempfile
import unittest
from collections import Counter
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from runtracker.errors import PersistenceFailure
from runtracker.models import ActionKind, DeleteGoalPayload, QueuedAction
from runtracker.offline_queue import OfflineActionQueue
from runtracker.storage import JsonFileStorage

from .test_common import make_connectivity, make_goal, make_queue, make_run_payload


class QueueTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "storage.json"
        self.queues = []

    def tearDown(self):
        self._tmp.cleanup()

    async def asyncTearDown(self):
        for queue in self.queues:
            await queue.shutdown()

    def queue(self, executor=None, online=True, **kwargs):
        queue = make_queue(self.path, executor, online=online, **kwargs)
        self.queues.append(queue)
        return queue

    @staticmethod
    def go_online(queue):
        queue._connectivity.is_online.return_value = True


class TestEnqueue(QueueTestCase):

    async def test_online_enqueue_applies_immediately(self):
        executor = AsyncMock()
        queue = self.queue(executor)
        await queue.initialize()

        action = await queue.enqueue(ActionKind.SAVE_RUN, make_run_payload())

        executor.assert_awaited_once_with(action)
        self.assertEqual(queue.queue_length(), 0)

    async def test_offline_enqueue_keeps_item(self):
        executor = AsyncMock()
        queue = self.queue(executor, online=False)
        await queue.initialize()

        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())

        executor.assert_not_awaited()
        self.assertEqual(queue.queue_length(), 1)

    async def test_kind_accepts_plain_string(self):
        queue = self.queue(online=False)
        action = await queue.enqueue("delete_goal", DeleteGoalPayload(goal_id="g1"))
        self.assertIs(action.kind, ActionKind.DELETE_GOAL)

    async def test_payload_must_match_kind(self):
        queue = self.queue(online=False)
        with self.assertRaises(TypeError):
            await queue.enqueue(ActionKind.SAVE_RUN, make_goal())
        self.assertEqual(queue.queue_length(), 0)

    async def test_unknown_kind_rejected(self):
        queue = self.queue(online=False)
        with self.assertRaises(ValueError):
            await queue.enqueue("rename_goal", make_goal())


class TestProcessQueue(QueueTestCase):

    async def test_items_applied_in_enqueue_order(self):
        executor = AsyncMock()
        queue = self.queue(executor, online=False)
        first = await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("a"))
        second = await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("b"))
        third = await queue.enqueue(ActionKind.SAVE_RUN, make_run_payload())

        self.go_online(queue)
        self.assertEqual(await queue.process_queue(), 3)

        self.assertEqual([c.args[0].id for c in executor.await_args_list], [first.id, second.id, third.id])
        self.assertEqual(queue.queue_length(), 0)

    async def test_failure_halts_the_pass(self):
        executor = AsyncMock(side_effect=[PersistenceFailure("500"), None, None])
        queue = self.queue(executor, online=False)
        first = await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("a"))
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("b"))

        self.go_online(queue)
        self.assertEqual(await queue.process_queue(), 0)

        self.assertEqual(executor.await_count, 1)
        self.assertEqual(queue.queue_length(), 2)
        self.assertEqual(first.retry_count, 1)

        # Next pass picks up where it stopped
        self.assertEqual(await queue.process_queue(), 2)
        self.assertEqual(queue.queue_length(), 0)

    async def test_persistently_failing_items_are_each_tried_max_retries_times(self):
        executor = AsyncMock(side_effect=PersistenceFailure("boom"))
        queue = self.queue(executor, online=False)
        actions = [await queue.enqueue(ActionKind.CREATE_GOAL, make_goal(str(i))) for i in range(3)]

        self.go_online(queue)
        for _ in range(10):
            if queue.queue_length() == 0:
                break
            await queue.process_queue()

        self.assertEqual(queue.queue_length(), 0)
        attempts = Counter(c.args[0].id for c in executor.await_args_list)
        self.assertEqual(attempts, Counter({a.id: 3 for a in actions}))

    async def test_drop_listener_told_about_dropped_items(self):
        executor = AsyncMock(side_effect=PersistenceFailure("boom"))
        queue = self.queue(executor, online=False, max_retries=1)
        dropped = []
        queue.add_drop_listener(lambda item, failure: dropped.append((item, failure)))
        action = await queue.enqueue(ActionKind.DELETE_GOAL, DeleteGoalPayload(goal_id="g1"))

        self.go_online(queue)
        await queue.process_queue()

        self.assertEqual(len(dropped), 1)
        item, failure = dropped[0]
        self.assertEqual(item.id, action.id)
        self.assertIsInstance(failure, PersistenceFailure)
        self.assertEqual(failure.action_id, action.id)

    async def test_removed_drop_listener_not_called(self):
        executor = AsyncMock(side_effect=PersistenceFailure("boom"))
        queue = self.queue(executor, online=False, max_retries=1)
        listener = MagicMock()
        remove = queue.add_drop_listener(listener)
        remove()
        await queue.enqueue(ActionKind.DELETE_GOAL, DeleteGoalPayload(goal_id="g1"))

        self.go_online(queue)
        await queue.process_queue()

        listener.assert_not_called()
        self.assertEqual(queue.queue_length(), 0)

    async def test_offline_pass_is_skipped(self):
        executor = AsyncMock()
        queue = self.queue(executor, online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())

        self.assertEqual(await queue.process_queue(), 0)
        executor.assert_not_awaited()
        self.assertEqual(queue.queue_length(), 1)

    async def test_connectivity_probe_error_counts_as_offline(self):
        executor = AsyncMock()
        queue = self.queue(executor, online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        queue._connectivity.is_online.side_effect = OSError("no route")

        self.assertEqual(await queue.process_queue(), 0)
        executor.assert_not_awaited()

    async def test_reentrant_pass_is_a_no_op(self):
        release = asyncio.Event()

        async def slow_executor(action):
            await release.wait()

        queue = self.queue(AsyncMock(side_effect=slow_executor), online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        self.go_online(queue)

        first = asyncio.ensure_future(queue.process_queue())
        await asyncio.sleep(0)
        self.assertTrue(queue.status()["is_processing"])
        self.assertEqual(await queue.process_queue(), 0)

        release.set()
        self.assertEqual(await first, 1)
        self.assertFalse(queue.status()["is_processing"])

    async def test_notify_online_processes(self):
        executor = AsyncMock()
        queue = self.queue(executor, online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())

        self.go_online(queue)
        await queue.notify_online()

        executor.assert_awaited_once()
        self.assertEqual(queue.queue_length(), 0)

    async def test_retry_timer_drains_queue(self):
        executor = AsyncMock()
        queue = self.queue(executor, online=False, retry_interval=0.01)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        self.go_online(queue)

        for _ in range(50):
            if queue.queue_length() == 0:
                break
            await asyncio.sleep(0.01)

        self.assertEqual(queue.queue_length(), 0)
        executor.assert_awaited_once()


class TestPersistence(QueueTestCase):

    async def test_queue_survives_restart(self):
        queue = self.queue(online=False)
        goal = await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("a"))
        run = await queue.enqueue(ActionKind.SAVE_RUN, make_run_payload(7.5))
        await queue.shutdown()

        executor = AsyncMock()
        restarted = self.queue(executor, online=False)
        await restarted.initialize()
        self.assertEqual(restarted.queue_length(), 2)

        self.go_online(restarted)
        await restarted.process_queue()

        replayed = [c.args[0] for c in executor.await_args_list]
        self.assertEqual([a.id for a in replayed], [goal.id, run.id])
        self.assertEqual(replayed[0].payload, make_goal("a"))
        self.assertEqual(replayed[1].payload.distance, 7.5)

    async def test_retry_count_is_persisted(self):
        executor = AsyncMock(side_effect=PersistenceFailure("boom"))
        queue = self.queue(executor, online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        self.go_online(queue)
        await queue.process_queue()

        restarted = self.queue(online=False)
        await restarted.initialize()
        self.assertEqual(restarted.status()["items"][0]["retry_count"], 1)

    async def test_corrupt_queue_entry_starts_empty(self):
        JsonFileStorage(self.path).set("offline_queue", "{not json")
        queue = self.queue(online=False)
        await queue.initialize()
        self.assertEqual(queue.queue_length(), 0)

    async def test_unknown_kind_in_storage_starts_empty(self):
        JsonFileStorage(self.path).set(
            "offline_queue",
            '[{"id": "x", "kind": "rename_goal", "payload": {}, "enqueued_at_ms": 0}]',
        )
        queue = self.queue(online=False)
        await queue.initialize()
        self.assertEqual(queue.queue_length(), 0)

    async def test_storage_errors_do_not_break_enqueue(self):
        storage = MagicMock()
        storage.get.side_effect = OSError("disk gone")
        storage.set.side_effect = OSError("disk full")
        queue = OfflineActionQueue(storage, AsyncMock(), make_connectivity(False), retry_interval=3600)
        self.queues.append(queue)
        await queue.initialize()
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())

        self.assertEqual(queue.queue_length(), 1)

    async def test_cancelled_pass_keeps_applied_items_out_of_storage(self):
        release = asyncio.Event()
        calls = []

        async def executor(action):
            calls.append(action.id)
            if len(calls) > 1:
                await release.wait()

        queue = self.queue(AsyncMock(side_effect=executor), online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("a"))
        second = await queue.enqueue(ActionKind.CREATE_GOAL, make_goal("b"))
        self.go_online(queue)

        pass_task = asyncio.ensure_future(queue.process_queue())
        await asyncio.sleep(0)
        pass_task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await pass_task

        restarted = self.queue(online=False)
        await restarted.initialize()
        self.assertEqual([item["id"] for item in restarted.status()["items"]], [second.id])

    async def test_undecodable_storage_file_starts_empty(self):
        self.path.write_bytes(b"\xff\xfe garbage")
        queue = self.queue(online=False)
        await queue.initialize()
        self.assertEqual(queue.queue_length(), 0)

        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        self.assertEqual(queue.queue_length(), 1)


class TestHousekeeping(QueueTestCase):

    async def test_clear_empties_queue_and_storage(self):
        queue = self.queue(online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        self.assertIsNotNone(queue._retry_task)

        queue.clear()

        self.assertEqual(queue.queue_length(), 0)
        self.assertIsNone(queue._retry_task)
        self.assertEqual(JsonFileStorage(self.path).get("offline_queue"), "[]")

    async def test_status_lists_items(self):
        queue = self.queue(online=False)
        action = await queue.enqueue(ActionKind.DELETE_GOAL, DeleteGoalPayload(goal_id="g1"))

        status = queue.status()

        self.assertEqual(status["length"], 1)
        self.assertFalse(status["is_processing"])
        item = status["items"][0]
        self.assertEqual(item["id"], action.id)
        self.assertEqual(item["kind"], "delete_goal")
        self.assertEqual(item["retry_count"], 0)
        self.assertTrue(item["enqueued_at"].endswith("+00:00"))

    async def test_shutdown_cancels_retry_task(self):
        queue = self.queue(online=False)
        await queue.enqueue(ActionKind.CREATE_GOAL, make_goal())
        task = queue._retry_task

        await queue.shutdown()

        self.assertTrue(task.done())
        self.assertIsNone(queue._retry_task)

    async def test_no_retry_task_when_empty(self):
        queue = self.queue()
        await queue.initialize()
        self.assertIsNone(queue._retry_task)


class TestQueuedActionSerialisation(unittest.TestCase):

    def test_dict_form_keeps_identity_and_payload(self):
        action = QueuedAction(kind=ActionKind.CREATE_GOAL, payload=make_goal(), enqueued_at_ms=1234, retry_count=2)
        restored = QueuedAction.from_dict(action.to_dict())
        self.assertEqual(restored, action)
