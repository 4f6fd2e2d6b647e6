"""
TrackingSession: lifecycle of one run from start to stop.

Responsibilities:
- Gate incoming samples by session state (only ACTIVE sessions ingest).
- Own the SessionStats aggregator and the accepted route.
- Keep the elapsed duration continuous across pause/resume.
- Own the 1 Hz duration refresh task and tear it down on pause/stop.
- Push StatsSnapshot objects to listeners after every change.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Callable

from .const import CALORIE_MODEL_DISTANCE, DEFAULT_WEIGHT_KG, DURATION_REFRESH_INTERVAL
from .errors import InvalidStateError, LocationUnavailableError, PermissionDeniedError, TrackerError
from .location import LocationProvider
from .models import Coordinate, FinalRunRecord, StatsSnapshot
from .session_stats import SessionStats

_LOGGER = logging.getLogger(__name__)

SnapshotListener = Callable[[StatsSnapshot], None]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class TrackingSession:
    """
    State machine IDLE → ACTIVE ⇄ PAUSED → STOPPED.

    Invalid transitions never raise: they are logged, recorded in
    last_error and the operation returns False.
    """

    def __init__(
        self,
        provider: LocationProvider | None,
        clock: Callable[[], float] = time.time,
        calorie_model: str = CALORIE_MODEL_DISTANCE,
        weight_kg: float = DEFAULT_WEIGHT_KG,
        refresh_interval: float = DURATION_REFRESH_INTERVAL,
    ) -> None:
        self._provider = provider
        self._clock = clock
        self._refresh_interval = refresh_interval
        self._stats = SessionStats(clock=clock, calorie_model=calorie_model, weight_kg=weight_kg)

        self._state = SessionState.IDLE
        self._route: list[Coordinate] = []
        self._listeners: list[SnapshotListener] = []

        # Provider subscription and duration refresh task while ACTIVE
        self._watch_handle: Any = None
        self._timer: asyncio.Task | None = None

        # Wall-clock seconds
        self._started_at: float | None = None
        self._paused_at: float | None = None

        self.last_error: TrackerError | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def snapshot(self) -> StatsSnapshot:
        return self._stats.snapshot()

    @property
    def route(self) -> tuple[Coordinate, ...]:
        return tuple(self._route)

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def locate(self) -> Coordinate | None:
        """One-off fix, e.g. to centre a map before the run starts."""
        if self._provider is None:
            raise LocationUnavailableError("No location provider configured")
        try:
            return await self._provider.get_current_position()
        except Exception as exc:  # noqa: BLE001
            raise LocationUnavailableError(f"Could not get current position: {exc}") from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """
        Begin tracking.

        Raises PermissionDeniedError when the provider refuses permission
        and LocationUnavailableError when there is no usable provider; the
        session stays IDLE in both cases.
        """
        if self._state is not SessionState.IDLE:
            return self._invalid("start")
        if self._provider is None:
            raise LocationUnavailableError("No location provider configured")

        try:
            granted = await self._provider.request_permission()
        except Exception as exc:  # noqa: BLE001
            raise LocationUnavailableError(f"Permission check failed: {exc}") from exc
        if not granted:
            raise PermissionDeniedError("Location permission not granted")

        self._stats.reset()
        self._route.clear()
        now = self._clock()
        self._stats.start(now)
        self._started_at = now
        self._paused_at = None

        self._state = SessionState.ACTIVE
        try:
            await self._subscribe()
        except LocationUnavailableError:
            if self._state is SessionState.ACTIVE:
                self._state = SessionState.IDLE
            raise
        if self._abandoned_while_subscribing("start"):
            return False

        self._start_timer()
        _LOGGER.info("Run tracking started")
        self._notify()
        return True

    def ingest(self, sample: Coordinate) -> None:
        """Provider callback. Never raises, never blocks."""
        if self._state is not SessionState.ACTIVE:
            _LOGGER.debug("Ignoring sample while %s", self._state.value)
            return
        if self._stats.update(sample):
            self._route.append(sample)
        self._notify()

    def pause(self) -> bool:
        if self._state is not SessionState.ACTIVE:
            return self._invalid("pause")

        self._stats.refresh_duration()
        self._paused_at = self._clock()
        self._cancel_timer()
        self._unsubscribe()
        self._state = SessionState.PAUSED
        _LOGGER.info("Run tracking paused at %s s", self._stats.duration_seconds)
        self._notify()
        return True

    async def resume(self) -> bool:
        """
        Continue a paused run.

        The start reference moves forward by the paused span, so paused
        wall-clock time never reaches duration_seconds.
        """
        if self._state is not SessionState.PAUSED:
            return self._invalid("resume")

        now = self._clock()
        if self._paused_at is not None:
            self._stats.shift_start(now - self._paused_at)
        # A failed resume stays paused from this instant on
        self._paused_at = now
        self._stats.break_segment()

        self._state = SessionState.ACTIVE
        try:
            await self._subscribe()
        except LocationUnavailableError:
            if self._state is SessionState.ACTIVE:
                self._state = SessionState.PAUSED
            raise
        if self._abandoned_while_subscribing("resume"):
            return False

        self._paused_at = None
        self._start_timer()
        _LOGGER.info("Run tracking resumed")
        self._notify()
        return True

    def stop(self) -> FinalRunRecord:
        """
        Finish the run and hand back its statistics and route.

        From IDLE this is a no-op returning an empty record.
        """
        if self._state is SessionState.IDLE:
            return FinalRunRecord.empty()
        if self._state is SessionState.STOPPED:
            self._invalid("stop")
            return FinalRunRecord.empty()

        self._cancel_timer()
        self._unsubscribe()
        if self._state is SessionState.ACTIVE:
            self._stats.refresh_duration()
        self._state = SessionState.STOPPED

        record = FinalRunRecord(
            snapshot=self._stats.snapshot(),
            route=tuple(self._route),
            started_at_ms=int(self._started_at * 1000) if self._started_at is not None else None,
            ended_at_ms=int(self._clock() * 1000),
        )
        _LOGGER.info(
            "Run tracking stopped: %.2f km in %s s",
            record.snapshot.distance_km, record.snapshot.duration_seconds,
        )
        self._notify()
        return record

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _invalid(self, operation: str) -> bool:
        self.last_error = InvalidStateError(operation, self._state.value)
        _LOGGER.warning("%s", self.last_error)
        return False

    def _abandoned_while_subscribing(self, operation: str) -> bool:
        # stop() or pause() may run while watch_position() is pending
        if self._state is SessionState.ACTIVE:
            return False
        self._unsubscribe()
        _LOGGER.debug("Session left ACTIVE during %s, releasing location updates", operation)
        return True

    async def _subscribe(self) -> None:
        try:
            self._watch_handle = await self._provider.watch_position(self.ingest)
        except Exception as exc:  # noqa: BLE001
            self._watch_handle = None
            raise LocationUnavailableError(f"Location provider failed to start: {exc}") from exc

    def _unsubscribe(self) -> None:
        if self._watch_handle is None:
            return
        handle, self._watch_handle = self._watch_handle, None
        try:
            self._provider.unwatch(handle)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Failed to stop location updates: %s", exc)

    def _start_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._refresh_duration_forever())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _refresh_duration_forever(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            self._stats.refresh_duration()
            self._notify()

    def _notify(self) -> None:
        snapshot = self._stats.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Snapshot listener failed: %s", exc)
