"""Connectivity collaborator: answers "are we online?" for the offline queue."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol, runtime_checkable

from .const import AVAILABILITY_TIMEOUT
from .requests import check_availability

_LOGGER = logging.getLogger(__name__)

OnlineListener = Callable[[], Awaitable[None]]


@runtime_checkable
class Connectivity(Protocol):
    async def is_online(self) -> bool: ...


class BackendConnectivity:
    """
    Online means the backend answers a HEAD probe.

    When a probe finds the backend reachable again after it was unreachable,
    every online listener is scheduled as a task on the running loop.
    """

    def __init__(self, url: str, timeout: int = AVAILABILITY_TIMEOUT) -> None:
        self.url = url
        self._timeout = timeout
        self._last_online: bool | None = None
        self._listeners: list[OnlineListener] = []
        self._tasks: set[asyncio.Task] = set()

    def add_online_listener(self, listener: OnlineListener) -> Callable[[], None]:
        """Register a coroutine function run on reconnect; returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def is_online(self) -> bool:
        online = await check_availability(self.url, timeout=self._timeout)
        if online != self._last_online:
            _LOGGER.info("Backend %s", "reachable" if online else "unreachable")
            if online and self._last_online is False:
                self._notify_online()
        self._last_online = online
        return online

    async def shutdown(self) -> None:
        """Wait for any reconnect listeners still running."""
        if self._tasks:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    _LOGGER.debug("Online listener error during shutdown: %s", result)

    def _notify_online(self) -> None:
        # Scheduled, not awaited: listeners usually probe connectivity themselves
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            task = loop.create_task(self._run_listener(listener))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run_listener(listener: OnlineListener) -> None:
        try:
            await listener()
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Online listener failed: %s", exc)
