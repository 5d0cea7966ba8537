"""Typer CLI entrypoint."""

from __future__ import annotations

import json
import logging

import typer

from sensorreset.core.errors import SensorResetError
from sensorreset.core.model import DeviceRole, RecoveryReport
from sensorreset.core.notice import build_notice
from sensorreset.core.recovery import PERSISTENT_ISSUE_HINT
from sensorreset.core.service import RecoveryService

app = typer.Typer(help="Reset ghost-paired fitness sensors and purge cached Bluetooth state")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log each recovery step"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> RecoveryService:
    service = RecoveryService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.command("devices")
def list_devices() -> None:
    """List managed sensor roles and their connection state."""
    try:
        service = _build_service()
        devices = service.list_devices()
        if not devices:
            typer.echo("No managed devices configured")
            return

        for device in devices:
            state = "connected" if device.is_connected() else "disconnected"
            address = getattr(device, "address", None) or "<unpaired>"
            typer.echo(f"{device.role.value}: {device.display_name} [{address}] {state}")
    except SensorResetError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _echo_report(report: RecoveryReport) -> None:
    for target in report.targets:
        line = (
            f"{target.role.value}: disconnect={target.disconnect.status.value} "
            f"forget={target.forget.status.value}"
        )
        typer.echo(line)
        for error in (target.disconnect.error, target.forget.error):
            if error:
                typer.echo(f"  error: {error}")
    for step in report.sweep:
        detail = f" ({step.detail})" if step.detail else ""
        typer.echo(f"  sweep {step.step}: {step.status.value} affected={step.affected}{detail}")
    if report.scheduler_handles_cleared:
        typer.echo(f"  cancelled {report.scheduler_handles_cleared} pending callback(s)")


@app.command("reset")
def reset(
    role: str | None = typer.Argument(None, help="Device role, e.g. heart_rate_monitor or hrm"),
    all_devices: bool = typer.Option(False, "--all", help="Reset every managed device"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    as_json: bool = typer.Option(False, "--json", help="Print the recovery report as JSON"),
) -> None:
    """Disconnect, forget and purge cached pairing state for one role or all devices.

    A fresh CLI process holds no live sensor links, so its real effect is the
    platform pairing and local storage sweep.
    """
    try:
        if (role is None) == (not all_devices):
            typer.echo("Error: pass a device ROLE or --all (not both)", err=True)
            raise typer.Exit(code=2)

        target = DeviceRole.parse(role) if role is not None else None
        if not yes:
            if target is None:
                prompt = (
                    "This will remove ALL paired sensors, which may resolve connection issues. "
                    "You will need to re-pair them. Continue?"
                )
            else:
                prompt = f"This will reset cached pairing state for the {target.default_name}. Continue?"
            if not typer.confirm(prompt):
                typer.echo("Aborted")
                raise typer.Exit(code=1)

        service = _build_service()
        report = service.reset(target)
        if as_json:
            typer.echo(json.dumps(report.as_dict(), indent=2))
            return

        _echo_report(report)
        typer.echo(build_notice(report).message)
        if not report.succeeded:
            typer.echo(PERSISTENT_ISSUE_HINT)
    except SensorResetError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
