"""
RunCoordinator: composition root for run tracking and persistence.

Responsibilities:
- Own the collaborators for the lifetime of the app: location provider,
  backend, connectivity probe and offline queue.
- Hand out one TrackingSession at a time.
- Apply the "too short to save" rule when a run finishes.
- Write directly when online; fall back to the offline queue when offline
  or when the direct write fails.
"""
from __future__ import annotations

import enum
import logging
import time
from pathlib import Path
from typing import Callable

from .backend import SupabaseBackend
from .config import TrackerConfig
from .connectivity import BackendConnectivity, Connectivity
from .errors import InvalidStateError, PersistenceFailure
from .location import LocationProvider
from .models import (
    ActionKind,
    ActionPayload,
    CreateGoalPayload,
    DeleteGoalPayload,
    QueuedAction,
    RecordAchievementPayload,
    SaveRunPayload,
    UpdateGoalPayload,
)
from .offline_queue import OfflineActionQueue
from .storage import JsonFileStorage
from .tracking_session import SessionState, TrackingSession

_LOGGER = logging.getLogger(__name__)


class SaveOutcome(str, enum.Enum):
    SAVED = "saved"
    QUEUED = "queued"
    DISCARDED = "discarded"


class RunCoordinator:
    """Wires sessions to persistence."""

    def __init__(
        self,
        config: TrackerConfig,
        location_provider: LocationProvider | None,
        backend: SupabaseBackend,
        connectivity: Connectivity,
        queue: OfflineActionQueue,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.backend = backend
        self.connectivity = connectivity
        self.queue = queue
        self._location_provider = location_provider
        self._clock = clock
        self.session: TrackingSession | None = None

    @classmethod
    def from_config(
        cls, config: TrackerConfig, location_provider: LocationProvider | None
    ) -> "RunCoordinator":
        """Build the default collaborator graph for config."""
        backend = SupabaseBackend(
            config.supabase_url,
            config.supabase_key,
            access_token=config.access_token,
            timeout=config.request_timeout,
        )
        connectivity = BackendConnectivity(config.supabase_url)
        queue = OfflineActionQueue(
            JsonFileStorage(Path(config.storage_path)),
            backend.execute,
            connectivity,
            retry_interval=config.queue_retry_interval,
            max_retries=config.queue_max_retries,
        )
        connectivity.add_online_listener(queue.notify_online)
        return cls(config, location_provider, backend, connectivity, queue)

    async def async_setup(self) -> None:
        await self.queue.initialize()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def new_session(self) -> TrackingSession:
        """Create the session for the next run; only one may be in progress."""
        if self.session is not None and self.session.state in (SessionState.ACTIVE, SessionState.PAUSED):
            raise InvalidStateError("replace", self.session.state.value)
        self.session = TrackingSession(
            self._location_provider,
            clock=self._clock,
            calorie_model=self.config.calorie_model,
            weight_kg=self.config.weight_kg,
        )
        return self.session

    async def finish_run(self, location: str | None = None) -> SaveOutcome:
        """Stop the current session and persist the run if it is worth keeping."""
        if self.session is None:
            return SaveOutcome.DISCARDED

        record = self.session.stop()
        if record.is_too_short():
            _LOGGER.info(
                "Discarding short run (%s s, %.3f km)",
                record.snapshot.duration_seconds, record.snapshot.distance_km,
            )
            return SaveOutcome.DISCARDED

        payload = SaveRunPayload.from_record(record, self.config.user_id, location)
        return await self._write_or_queue(ActionKind.SAVE_RUN, payload)

    # ------------------------------------------------------------------
    # Goal and achievement writes
    # ------------------------------------------------------------------

    async def create_goal(self, payload: CreateGoalPayload) -> SaveOutcome:
        return await self._write_or_queue(ActionKind.CREATE_GOAL, payload)

    async def update_goal(self, payload: UpdateGoalPayload) -> SaveOutcome:
        return await self._write_or_queue(ActionKind.UPDATE_GOAL, payload)

    async def delete_goal(self, payload: DeleteGoalPayload) -> SaveOutcome:
        return await self._write_or_queue(ActionKind.DELETE_GOAL, payload)

    async def record_achievement(self, payload: RecordAchievementPayload) -> SaveOutcome:
        return await self._write_or_queue(ActionKind.RECORD_ACHIEVEMENT, payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Stop any running session, pending reconnect work and the queue's retry timer."""
        if self.session is not None and self.session.state in (SessionState.ACTIVE, SessionState.PAUSED):
            self.session.stop()
        if isinstance(self.connectivity, BackendConnectivity):
            await self.connectivity.shutdown()
        await self.queue.shutdown()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _write_or_queue(self, kind: ActionKind, payload: ActionPayload) -> SaveOutcome:
        # Earlier queued writes must land first
        if self.queue.queue_length() == 0 and await self.connectivity.is_online():
            action = QueuedAction(kind=kind, payload=payload, enqueued_at_ms=int(self._clock() * 1000))
            try:
                await self.backend.execute(action)
            except PersistenceFailure as exc:
                _LOGGER.warning("Direct %s failed, queueing: %s", kind.value, exc)
            else:
                _LOGGER.info("Saved %s", kind.value)
                return SaveOutcome.SAVED

        await self.queue.enqueue(kind, payload)
        return SaveOutcome.QUEUED
