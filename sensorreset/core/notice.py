"""User-facing summaries of a recovery run for the notification layer."""

from __future__ import annotations

from dataclasses import dataclass

from sensorreset.core.model import DeviceRole, RecoveryReport, RecoveryRequest


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    duration_ms: int


def build_notice(report: RecoveryReport) -> Notice:
    # A returned report is a success even with partial failures; recovery is best-effort.
    role = report.request.target_role
    if role is None:
        return Notice(
            level="success",
            message="All Bluetooth connections reset. Please re-pair your sensors.",
            duration_ms=5000,
        )
    if not report.needed_action:
        message = f"{role.default_name} was not connected; cached pairing state was cleared anyway."
    else:
        message = f"{role.default_name} reset complete."
    return Notice(
        level="success",
        message=f"{message} If issues persist, try closing and reopening the app.",
        duration_ms=7000 if role is DeviceRole.HEART_RATE_MONITOR else 5000,
    )


def build_error_notice(request: RecoveryRequest, exc: Exception) -> Notice:
    if request.is_all:
        return Notice(level="error", message=f"Failed to reset Bluetooth connections: {exc}", duration_ms=3000)
    return Notice(
        level="error",
        message=(
            f"Reset failed: {exc}. For persistent ghost pairing, restart the Bluetooth stack "
            "or reboot the device."
        ),
        duration_ms=5000,
    )
