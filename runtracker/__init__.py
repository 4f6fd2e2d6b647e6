import logging

from .config import TrackerConfig, load_config
from .const import VERSION
from .coordinator import RunCoordinator, SaveOutcome
from .errors import (
    ConfigError,
    InvalidStateError,
    LocationUnavailableError,
    PermissionDeniedError,
    PersistenceFailure,
    TrackerError,
)
from .models import ActionKind, Coordinate, FinalRunRecord, QueuedAction, StatsSnapshot
from .offline_queue import OfflineActionQueue
from .session_stats import SessionStats
from .tracking_session import SessionState, TrackingSession

__version__ = VERSION

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())
