"""BlueZ pairing cache adapter driven through ``bluetoothctl``."""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from collections.abc import Iterable, Sequence

from sensorreset.core.errors import PlatformSweepStepError, PlatformSweepUnavailable
from sensorreset.core.model import PlatformCacheEntry

_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F:]{17})\s+(.+)$", re.IGNORECASE)
_CONNECTED_RE = re.compile(r"^\s*Connected:\s*(yes|no)\s*$", re.IGNORECASE | re.MULTILINE)
_COMMAND_TIMEOUT_S = 10.0
LOGGER = logging.getLogger(__name__)


class BluezPairingCache:
    def __init__(self, *, allowed_addresses: Iterable[str] | None = None) -> None:
        self.allowed_addresses = (
            frozenset(a.upper() for a in allowed_addresses) if allowed_addresses is not None else None
        )

    async def list_cached_pairings(self) -> list[PlatformCacheEntry] | None:
        try:
            return await asyncio.to_thread(self._list_paired)
        except PlatformSweepUnavailable as exc:
            LOGGER.debug("Pairing enumeration unavailable: %s", exc)
            return None

    async def disconnect_if_live(self, entry: PlatformCacheEntry) -> bool:
        if not entry.connected:
            return False
        LOGGER.info("Force disconnecting cached device: %s", entry.name or entry.id)
        await asyncio.to_thread(_checked_run, ["bluetoothctl", "disconnect", entry.id])
        return True

    async def forget_if_supported(self, entry: PlatformCacheEntry) -> bool:
        LOGGER.info("Forgetting cached device: %s", entry.name or entry.id)
        await asyncio.to_thread(_checked_run, ["bluetoothctl", "remove", entry.id])
        return True

    def _list_paired(self) -> list[PlatformCacheEntry]:
        listing_commands = [
            ["bluetoothctl", "devices", "Paired"],
            ["bluetoothctl", "paired-devices"],
        ]

        seen: set[str] = set()
        entries: list[PlatformCacheEntry] = []
        command_errors: list[str] = []
        available = False

        for cmd in listing_commands:
            result = _run_command(cmd)
            if result is None:
                continue
            available = True
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()
                if stderr:
                    command_errors.append(f"{' '.join(cmd)} -> {stderr}")
                continue

            for line in result.stdout.splitlines():
                match = _DEVICE_LINE_RE.match(line.strip())
                if not match:
                    continue
                mac, name = match.group(1).upper(), match.group(2).strip()
                if mac in seen:
                    continue
                seen.add(mac)
                if self.allowed_addresses is not None and mac not in self.allowed_addresses:
                    continue
                entries.append(PlatformCacheEntry(id=mac, name=name, connected=_is_connected(mac)))

            if entries or not command_errors:
                break

        if not available:
            raise PlatformSweepUnavailable("bluetoothctl is not installed")

        if not entries and command_errors:
            joined = " | ".join(command_errors)
            raise PlatformSweepStepError(
                f"Listing paired devices failed. Ensure a working D-Bus/BlueZ session. Details: {joined}"
            )

        LOGGER.info("Found %d cached Bluetooth device(s)", len(entries))
        return entries


def _is_connected(mac: str) -> bool:
    result = _run_command(["bluetoothctl", "info", mac])
    if result is None or result.returncode != 0:
        return False
    match = _CONNECTED_RE.search(result.stdout)
    return bool(match and match.group(1).lower() == "yes")


def _checked_run(cmd: Sequence[str]) -> None:
    result = _run_command(cmd)
    if result is None:
        raise PlatformSweepStepError(f"{cmd[0]} is not installed")
    if result.returncode != 0:
        stderr = (result.stderr or result.stdout or "").strip()
        raise PlatformSweepStepError(f"{' '.join(cmd)} failed: {stderr or f'exit {result.returncode}'}")


def _run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=_COMMAND_TIMEOUT_S,
        )
    except FileNotFoundError:
        return None
    except subprocess.TimeoutExpired as exc:
        raise PlatformSweepStepError(f"{' '.join(cmd)} timed out after {exc.timeout}s") from exc
