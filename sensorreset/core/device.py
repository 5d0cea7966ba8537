"""Device capability interface."""

from __future__ import annotations

from typing import Protocol

from sensorreset.core.model import DeviceRole


class Device(Protocol):
    """A managed sensor connection; one instance per role for the process lifetime.

    ``disconnect`` and ``forget`` must be idempotent and safe to call while
    another call on the same device is still in flight.
    """

    @property
    def role(self) -> DeviceRole: ...

    @property
    def display_name(self) -> str: ...

    def is_connected(self) -> bool:
        """Current transport state. Must not block."""

    async def disconnect(self) -> None:
        """Close the live connection; a no-op when already disconnected."""

    async def forget(self) -> None:
        """Drop any cached identity so the next scan treats the peripheral as new."""
