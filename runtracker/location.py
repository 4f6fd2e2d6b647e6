"""
Location provider capability consumed by TrackingSession.

The device side (platform GPS, a replayed GPX file, a test double) lives
outside this package; it only has to satisfy LocationProvider.
"""
from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from .models import Coordinate

SampleCallback = Callable[[Coordinate], None]


@runtime_checkable
class LocationProvider(Protocol):
    """Source of GPS samples."""

    async def request_permission(self) -> bool:
        """Ask for (or confirm) location permission; True when granted."""

    async def get_current_position(self) -> Coordinate | None:
        """Return a single fix, or None when none can be obtained."""

    async def watch_position(self, callback: SampleCallback) -> Any:
        """
        Start delivering samples to callback on the event loop.

        Returns an opaque subscription handle for unwatch(). Raises when the
        provider cannot start.
        """

    def unwatch(self, handle: Any) -> None:
        """Stop the subscription identified by handle."""
