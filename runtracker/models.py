"""
Domain models for run tracking and the offline write queue.

Pure data classes with no dependencies on HTTP, storage or the event loop.
Snapshots and records are frozen; replace them with dataclasses.replace().
"""
from __future__ import annotations

import dataclasses
import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from .const import MIN_SAVE_DISTANCE_KM, MIN_SAVE_DURATION_SECONDS


def _iso_from_millis(millis: int | None) -> str | None:
    if millis is None:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


@dataclasses.dataclass(frozen=True)
class Coordinate:
    """One timestamped GPS fix as delivered by the location provider."""

    latitude: float
    longitude: float
    timestamp_ms: int
    altitude: float | None = None
    speed_mps: float | None = None
    accuracy_m: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "speed": self.speed_mps,
            "accuracy": self.accuracy_m,
            "timestamp": self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Coordinate":
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            timestamp_ms=int(data["timestamp"]),
            altitude=data.get("altitude"),
            speed_mps=data.get("speed"),
            accuracy_m=data.get("accuracy"),
        )


@dataclasses.dataclass(frozen=True)
class StatsSnapshot:
    """Aggregated statistics of the in-progress or just-finished run."""

    distance_km: float = 0.0
    current_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    avg_speed_kmh: float = 0.0
    elevation_gain_m: float = 0.0
    duration_seconds: int = 0
    pace: str = "0:00"
    calories: int = 0


@dataclasses.dataclass(frozen=True)
class FinalRunRecord:
    """Everything a stopped session hands over for persistence."""

    snapshot: StatsSnapshot = dataclasses.field(default_factory=StatsSnapshot)
    route: tuple[Coordinate, ...] = ()
    started_at_ms: int | None = None
    ended_at_ms: int | None = None

    @classmethod
    def empty(cls) -> "FinalRunRecord":
        return cls()

    def is_too_short(self) -> bool:
        """True when the run should be discarded instead of saved."""
        return (
            self.snapshot.duration_seconds < MIN_SAVE_DURATION_SECONDS
            or self.snapshot.distance_km < MIN_SAVE_DISTANCE_KM
        )


# ---------------------------------------------------------------------------
# Queued actions, one payload type per action kind
# ---------------------------------------------------------------------------

class ActionKind(str, enum.Enum):
    SAVE_RUN = "save_run"
    CREATE_GOAL = "create_goal"
    UPDATE_GOAL = "update_goal"
    DELETE_GOAL = "delete_goal"
    RECORD_ACHIEVEMENT = "record_achievement"


@dataclasses.dataclass(frozen=True)
class SaveRunPayload:
    """A row of the `runs` table."""

    user_id: str | None
    distance: float
    duration: int
    calories: int
    avg_speed: float
    max_speed: float
    pace: str
    elevation_gain: float
    route_coordinates: list[dict[str, Any]] = dataclasses.field(default_factory=list)
    location: str = "Unknown"
    start_time: str | None = None
    end_time: str | None = None

    @classmethod
    def from_record(
        cls, record: FinalRunRecord, user_id: str | None, location: str | None = None
    ) -> "SaveRunPayload":
        stats = record.snapshot
        return cls(
            user_id=user_id,
            distance=stats.distance_km,
            duration=stats.duration_seconds,
            calories=stats.calories,
            avg_speed=stats.avg_speed_kmh,
            max_speed=stats.max_speed_kmh,
            pace=stats.pace,
            elevation_gain=stats.elevation_gain_m,
            route_coordinates=[c.to_dict() for c in record.route],
            location=location or "Unknown",
            start_time=_iso_from_millis(record.started_at_ms),
            end_time=_iso_from_millis(record.ended_at_ms),
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SaveRunPayload":
        return cls(**data)


@dataclasses.dataclass(frozen=True)
class CreateGoalPayload:
    """A row of the `goals` table."""

    user_id: str
    title: str
    type: str           # distance | time | calories | frequency
    target_value: float
    unit: str
    period: str         # daily | weekly | monthly | yearly
    description: str | None = None
    deadline: str | None = None
    current_value: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CreateGoalPayload":
        return cls(**data)


@dataclasses.dataclass(frozen=True)
class UpdateGoalPayload:
    goal_id: str
    updates: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"goal_id": self.goal_id, "updates": dict(self.updates)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UpdateGoalPayload":
        return cls(goal_id=data["goal_id"], updates=dict(data.get("updates") or {}))


@dataclasses.dataclass(frozen=True)
class DeleteGoalPayload:
    goal_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"goal_id": self.goal_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeleteGoalPayload":
        return cls(goal_id=data["goal_id"])


@dataclasses.dataclass(frozen=True)
class RecordAchievementPayload:
    """A row of the `user_achievements` junction table."""

    user_id: str
    achievement_id: str
    earned_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecordAchievementPayload":
        return cls(**data)


ActionPayload = (
    SaveRunPayload
    | CreateGoalPayload
    | UpdateGoalPayload
    | DeleteGoalPayload
    | RecordAchievementPayload
)

PAYLOAD_TYPES: dict[ActionKind, type] = {
    ActionKind.SAVE_RUN: SaveRunPayload,
    ActionKind.CREATE_GOAL: CreateGoalPayload,
    ActionKind.UPDATE_GOAL: UpdateGoalPayload,
    ActionKind.DELETE_GOAL: DeleteGoalPayload,
    ActionKind.RECORD_ACHIEVEMENT: RecordAchievementPayload,
}


@dataclasses.dataclass
class QueuedAction:
    """A pending backend write awaiting connectivity or retry."""

    kind: ActionKind
    payload: ActionPayload
    enqueued_at_ms: int
    id: str = dataclasses.field(default_factory=lambda: uuid.uuid4().hex)
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": self.payload.to_dict(),
            "enqueued_at_ms": self.enqueued_at_ms,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedAction":
        kind = ActionKind(data["kind"])
        return cls(
            id=str(data["id"]),
            kind=kind,
            payload=PAYLOAD_TYPES[kind].from_dict(data["payload"]),
            enqueued_at_ms=int(data["enqueued_at_ms"]),
            retry_count=int(data.get("retry_count", 0)),
        )
