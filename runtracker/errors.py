"""
Error taxonomy for run tracking and persistence.

Every error here is recoverable by the caller; none is meant to take the
process down.
"""
from __future__ import annotations


class TrackerError(Exception):
    """Base class for all runtracker errors."""


class PermissionDeniedError(TrackerError):
    """Location permission has not been granted."""


class LocationUnavailableError(TrackerError):
    """No location provider is available, or it refused to start."""


class InvalidStateError(TrackerError):
    """A session lifecycle operation was called from the wrong state."""

    def __init__(self, operation: str, state) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} a session in state {state}")


class PersistenceFailure(TrackerError):
    """A write to the backend failed."""

    def __init__(self, message: str, action_id: str | None = None) -> None:
        self.action_id = action_id
        super().__init__(message)


class ConfigError(TrackerError):
    """Configuration is missing or invalid."""
