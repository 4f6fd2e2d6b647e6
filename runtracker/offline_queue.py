"""
OfflineActionQueue: durable FIFO of backend writes awaiting connectivity.

The queue is persisted to key-value storage on every change, replayed in
enqueue order, and retried on a timer while items remain. Each item's outcome
is written back before the pass moves on to the next one. This is a pure
asyncio component; the backend, connectivity probe and storage are injected.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from .connectivity import Connectivity
from .const import QUEUE_MAX_RETRIES, QUEUE_RETRY_INTERVAL, QUEUE_STORAGE_KEY
from .errors import PersistenceFailure
from .models import PAYLOAD_TYPES, ActionKind, ActionPayload, QueuedAction
from .storage import KeyValueStorage

_LOGGER = logging.getLogger(__name__)

ActionExecutor = Callable[[QueuedAction], Awaitable[Any]]
DropListener = Callable[[QueuedAction, PersistenceFailure], None]


class OfflineActionQueue:
    """
    Replays queued writes strictly in enqueue order.

    A failing item halts the pass so later, possibly dependent, writes are
    not applied ahead of it. After max_retries failures the item is dropped,
    drop listeners are told, and the pass carries on with the next item.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        executor: ActionExecutor,
        connectivity: Connectivity,
        retry_interval: float = QUEUE_RETRY_INTERVAL,
        max_retries: int = QUEUE_MAX_RETRIES,
        storage_key: str = QUEUE_STORAGE_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._executor = executor
        self._connectivity = connectivity
        self._retry_interval = retry_interval
        self._max_retries = max_retries
        self._storage_key = storage_key
        self._clock = clock

        self._queue: list[QueuedAction] = []
        self._processing = False
        self._retry_task: asyncio.Task | None = None
        self._drop_listeners: list[DropListener] = []

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the persisted queue and resume retrying if anything is left."""
        self._queue = self._load()
        _LOGGER.info("Loaded offline queue: %s items", len(self._queue))
        self._ensure_retry_task()

    async def enqueue(self, kind: ActionKind | str, payload: ActionPayload) -> QueuedAction:
        """
        Append a write and persist the queue.

        Processing is attempted straight away; it is a no-op while offline.
        """
        kind = ActionKind(kind)
        expected = PAYLOAD_TYPES[kind]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{kind.value} expects {expected.__name__}, got {type(payload).__name__}"
            )

        action = QueuedAction(
            kind=kind,
            payload=payload,
            enqueued_at_ms=int(self._clock() * 1000),
        )
        self._queue.append(action)
        self._save()
        _LOGGER.info("Queued %s (queue size %s)", kind.value, len(self._queue))

        await self.process_queue()
        self._ensure_retry_task()
        return action

    async def notify_online(self) -> None:
        """Connectivity-restored hook."""
        _LOGGER.debug("Back online, processing offline queue")
        await self.process_queue()

    async def process_queue(self) -> int:
        """
        Run one pass over the queue; returns the number of writes applied.

        Re-entrant calls while a pass is running return 0 immediately.
        """
        if self._processing or not self._queue:
            return 0

        self._processing = True
        try:
            if not await self._is_online():
                _LOGGER.debug("Offline, skipping queue processing")
                return 0

            _LOGGER.debug("Processing offline queue: %s items", len(self._queue))
            applied = 0
            for item in list(self._queue):
                try:
                    await self._executor(item)
                except Exception as exc:  # noqa: BLE001
                    item.retry_count += 1
                    if item.retry_count >= self._max_retries:
                        self._discard(item)
                        self._save()
                        self._dropped(item, exc)
                        continue
                    self._save()
                    _LOGGER.warning(
                        "Queued %s failed (attempt %s/%s): %s",
                        item.kind.value, item.retry_count, self._max_retries, exc,
                    )
                    break
                self._discard(item)
                self._save()
                applied += 1
                _LOGGER.debug("Applied queued %s", item.kind.value)

            _LOGGER.debug("Queue pass complete, %s items remaining", len(self._queue))
            return applied
        finally:
            self._processing = False

    def queue_length(self) -> int:
        return len(self._queue)

    def clear(self) -> None:
        """Forget every pending write and stop the retry timer."""
        self._queue = []
        self._save()
        self._cancel_retry_task()
        _LOGGER.info("Offline queue cleared")

    def status(self) -> dict[str, Any]:
        """Diagnostic view of the queue."""
        return {
            "length": len(self._queue),
            "is_processing": self._processing,
            "items": [
                {
                    "id": item.id,
                    "kind": item.kind.value,
                    "enqueued_at": datetime.fromtimestamp(
                        item.enqueued_at_ms / 1000, tz=timezone.utc
                    ).isoformat(),
                    "retry_count": item.retry_count,
                }
                for item in self._queue
            ],
        }

    def add_drop_listener(self, listener: DropListener) -> Callable[[], None]:
        """Be told when an item is given up on; returns a remover."""
        self._drop_listeners.append(listener)

        def _remove() -> None:
            if listener in self._drop_listeners:
                self._drop_listeners.remove(listener)

        return _remove

    async def shutdown(self) -> None:
        """Cancel the retry timer and wait for it to finish."""
        task = self._retry_task
        self._cancel_retry_task()
        if task is not None:
            results = await asyncio.gather(task, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                    _LOGGER.debug("Offline queue retry task error during shutdown: %s", result)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _is_online(self) -> bool:
        try:
            return bool(await self._connectivity.is_online())
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Error checking online status: %s", exc)
            return False

    def _discard(self, item: QueuedAction) -> None:
        # clear() may have emptied the queue mid-pass
        if item in self._queue:
            self._queue.remove(item)

    def _dropped(self, item: QueuedAction, exc: Exception) -> None:
        failure = PersistenceFailure(
            f"Dropped queued {item.kind.value} after {item.retry_count} failed attempts: {exc}",
            item.id,
        )
        _LOGGER.warning("%s; changes may be lost", failure)
        for listener in list(self._drop_listeners):
            try:
                listener(item, failure)
            except Exception as listener_exc:  # noqa: BLE001
                _LOGGER.error("Drop listener failed: %s", listener_exc)

    def _ensure_retry_task(self) -> None:
        if not self._queue:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return
        self._retry_task = asyncio.get_running_loop().create_task(self._retry_while_pending())

    def _cancel_retry_task(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None

    async def _retry_while_pending(self) -> None:
        while self._queue:
            await asyncio.sleep(self._retry_interval)
            await self.process_queue()

    def _load(self) -> list[QueuedAction]:
        try:
            raw = self._storage.get(self._storage_key)
        except OSError as exc:
            _LOGGER.warning("Error loading offline queue: %s", exc)
            return []
        if not raw:
            return []
        try:
            return [QueuedAction.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as exc:
            _LOGGER.warning("Discarding unreadable offline queue: %s", exc)
            return []

    def _save(self) -> None:
        try:
            self._storage.set(
                self._storage_key, json.dumps([item.to_dict() for item in self._queue])
            )
        except OSError as exc:
            _LOGGER.warning("Error saving offline queue: %s", exc)
