"""Stable public API for building tooling on top of sensorreset.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from sensorreset.core.config import Settings
from sensorreset.core.device import Device
from sensorreset.core.errors import (
    ConfigLoadError,
    ConfigValidationError,
    DeviceConnectError,
    DeviceRegistrationError,
    DisconnectError,
    ForgetError,
    NoMatchingDeviceError,
    PlatformSweepStepError,
    PlatformSweepUnavailable,
    SensorResetError,
    UnknownRoleError,
)
from sensorreset.core.model import (
    DeviceRole,
    PhaseStatus,
    PlatformCacheEntry,
    RecoveryReport,
    RecoveryRequest,
    SweepStatus,
    SweepStepResult,
    TargetReport,
)
from sensorreset.core.notice import Notice, build_error_notice, build_notice
from sensorreset.core.recovery import RecoveryOrchestrator
from sensorreset.core.registry import DeviceRegistry
from sensorreset.core.service import RecoveryService
from sensorreset.platform.base import NullPlatformSweeper, PlatformSweeper

__all__ = [
    "SensorResetError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceConnectError",
    "DeviceRegistrationError",
    "DisconnectError",
    "ForgetError",
    "NoMatchingDeviceError",
    "PlatformSweepStepError",
    "PlatformSweepUnavailable",
    "UnknownRoleError",
    "Device",
    "DeviceRole",
    "DeviceRegistry",
    "PhaseStatus",
    "PlatformCacheEntry",
    "RecoveryReport",
    "RecoveryRequest",
    "SweepStatus",
    "SweepStepResult",
    "TargetReport",
    "Notice",
    "RecoveryOrchestrator",
    "PlatformSweeper",
    "NullPlatformSweeper",
    "Client",
]


class Client:
    """Public client for resetting managed sensor connections.

    A `Client` wraps settings loading, the device registry, the platform
    sweeper and the recovery orchestrator behind a stable API intended for
    third-party tools (GUI/TUI/services/scripts).
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        registry: DeviceRegistry | None = None,
        sweeper: PlatformSweeper | None = None,
    ) -> None:
        self._service = RecoveryService(settings=settings, registry=registry, sweeper=sweeper)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    def list_devices(self) -> list[Device]:
        return self._service.list_devices()

    def reset(self, role: DeviceRole | str | None = None) -> RecoveryReport:
        """Run a recovery for one role, or for every managed device when ``role`` is None."""
        if isinstance(role, str):
            role = DeviceRole.parse(role)
        return self._service.reset(role)

    def reset_with_notice(self, role: DeviceRole | str | None = None) -> Notice:
        """Run a recovery and return the notification the UI should show."""
        parsed = DeviceRole.parse(role) if isinstance(role, str) else role
        request = RecoveryRequest(target_role=parsed)
        try:
            report = self._service.reset(parsed)
        except SensorResetError as exc:
            return build_error_notice(request, exc)
        return build_notice(report)
