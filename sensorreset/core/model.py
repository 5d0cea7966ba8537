"""Core data models used across registry, orchestrator, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sensorreset.core.errors import UnknownRoleError


class DeviceRole(Enum):
    CONTROLLABLE = "controllable"
    HEART_RATE_MONITOR = "heart_rate_monitor"
    POWER_METER = "power_meter"
    SPEED_CADENCE_SENSOR = "speed_cadence_sensor"
    MOXY = "moxy"
    CORE_TEMP = "core_temp"

    @property
    def default_name(self) -> str:
        return _DEFAULT_NAMES[self]

    @classmethod
    def parse(cls, text: str) -> DeviceRole:
        """Parse a role from its value, member name, dashed form, or short alias."""
        key = text.strip().lower().replace("-", "_").replace(" ", "_")
        if key in _ALIASES:
            return _ALIASES[key]
        for role in cls:
            if key == role.value:
                return role
        choices = ", ".join(role.value for role in cls)
        raise UnknownRoleError(f"Unknown device role '{text}'. Choose one of: {choices}")


_DEFAULT_NAMES = {
    DeviceRole.CONTROLLABLE: "Smart Trainer",
    DeviceRole.HEART_RATE_MONITOR: "Heart Rate Monitor",
    DeviceRole.POWER_METER: "Power Meter",
    DeviceRole.SPEED_CADENCE_SENSOR: "Speed/Cadence Sensor",
    DeviceRole.MOXY: "Moxy Muscle Oxygen",
    DeviceRole.CORE_TEMP: "Core Temperature",
}

_ALIASES = {
    "hrm": DeviceRole.HEART_RATE_MONITOR,
    "trainer": DeviceRole.CONTROLLABLE,
    "power": DeviceRole.POWER_METER,
    "cadence": DeviceRole.SPEED_CADENCE_SENSOR,
    "speed": DeviceRole.SPEED_CADENCE_SENSOR,
    "core": DeviceRole.CORE_TEMP,
}


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass(frozen=True)
class RecoveryRequest:
    """Which devices a recovery run targets; ``None`` means all of them."""

    target_role: DeviceRole | None = None

    @classmethod
    def all(cls) -> RecoveryRequest:
        return cls(target_role=None)

    @classmethod
    def for_role(cls, role: DeviceRole) -> RecoveryRequest:
        return cls(target_role=role)

    @property
    def is_all(self) -> bool:
        return self.target_role is None

    @property
    def label(self) -> str:
        return "ALL" if self.target_role is None else self.target_role.value


class PhaseStatus(Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PhaseOutcome:
    status: PhaseStatus
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is not PhaseStatus.FAILED


class TargetStage(Enum):
    TARGETED = "targeted"
    DISCONNECTED = "disconnected"
    FORGOTTEN = "forgotten"
    SWEPT_OR_SKIPPED = "swept_or_skipped"
    DONE = "done"


@dataclass(frozen=True)
class TargetReport:
    role: DeviceRole
    display_name: str
    disconnect: PhaseOutcome
    forget: PhaseOutcome
    stage: TargetStage = TargetStage.DONE

    @property
    def succeeded(self) -> bool:
        return self.disconnect.succeeded and self.forget.succeeded


class SweepStatus(Enum):
    OK = "ok"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class SweepStepResult:
    step: str
    status: SweepStatus
    detail: str | None = None
    affected: int = 0


@dataclass(frozen=True)
class PlatformCacheEntry:
    """Opaque pairing record held by the platform Bluetooth stack."""

    id: str
    name: str
    connected: bool = False


@dataclass(frozen=True)
class RecoveryReport:
    request: RecoveryRequest
    targets: tuple[TargetReport, ...] = ()
    sweep: tuple[SweepStepResult, ...] = ()
    scheduler_handles_cleared: int = 0

    @property
    def failed_targets(self) -> tuple[TargetReport, ...]:
        return tuple(t for t in self.targets if not t.succeeded)

    @property
    def sweep_failures(self) -> tuple[SweepStepResult, ...]:
        return tuple(s for s in self.sweep if s.status is SweepStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        return not self.failed_targets and not self.sweep_failures

    @property
    def needed_action(self) -> bool:
        """False when every target was already disconnected before the run."""
        return any(t.disconnect.status is not PhaseStatus.SKIPPED for t in self.targets)

    def target(self, role: DeviceRole) -> TargetReport | None:
        for report in self.targets:
            if report.role is role:
                return report
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "request": self.request.label,
            "succeeded": self.succeeded,
            "targets": [
                {
                    "role": t.role.value,
                    "name": t.display_name,
                    "stage": t.stage.value,
                    "disconnect": {"status": t.disconnect.status.value, "error": t.disconnect.error},
                    "forget": {"status": t.forget.status.value, "error": t.forget.error},
                }
                for t in self.targets
            ],
            "sweep": [
                {
                    "step": s.step,
                    "status": s.status.value,
                    "detail": s.detail,
                    "affected": s.affected,
                }
                for s in self.sweep
            ],
            "scheduler_handles_cleared": self.scheduler_handles_cleared,
        }
