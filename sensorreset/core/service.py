"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import asyncio
import shutil

from sensorreset.core.config import Settings, load_settings
from sensorreset.core.device import Device
from sensorreset.core.model import DeviceRole, RecoveryReport, RecoveryRequest
from sensorreset.core.recovery import RecoveryOrchestrator
from sensorreset.core.registry import DeviceRegistry
from sensorreset.core.scheduler import CallbackScheduler
from sensorreset.drivers.ble_sensor import BleakSensor
from sensorreset.platform.base import HostPlatformSweeper, PlatformSweeper
from sensorreset.platform.bluez import BluezPairingCache
from sensorreset.platform.storage import LocalStateStore


class RecoveryService:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        registry: DeviceRegistry | None = None,
        sweeper: PlatformSweeper | None = None,
    ) -> None:
        if settings is None:
            loaded = load_settings()
            settings = loaded.settings
            self.load_warnings = loaded.warnings
        else:
            self.load_warnings = ()
        self.settings = settings
        self.runtime_warnings = _runtime_warnings(settings)
        self.scheduler = CallbackScheduler()
        self.registry = registry if registry is not None else build_registry(settings, self.scheduler)
        self.sweeper = sweeper if sweeper is not None else build_sweeper(settings)
        self.orchestrator = RecoveryOrchestrator(
            self.registry,
            sweeper=self.sweeper,
            scheduler=self.scheduler,
            timings=settings.timings,
            policy=settings.policy,
        )

    def list_devices(self) -> list[Device]:
        return list(self.registry)

    def reset(self, role: DeviceRole | None = None) -> RecoveryReport:
        request = RecoveryRequest.all() if role is None else RecoveryRequest.for_role(role)
        return asyncio.run(self.orchestrator.recover(request))


def build_registry(settings: Settings, scheduler: CallbackScheduler) -> DeviceRegistry:
    return DeviceRegistry(
        BleakSensor(
            role,
            name=device.name,
            address=device.address,
            scheduler=scheduler,
            reconnect_delay_s=settings.reconnect_delay_s,
        )
        for role, device in settings.devices.items()
        if device.enabled
    )


def build_sweeper(settings: Settings) -> PlatformSweeper:
    if settings.pairing_scope == "all":
        pairings = BluezPairingCache()
    else:
        pairings = BluezPairingCache(allowed_addresses=settings.managed_addresses)
    return HostPlatformSweeper(
        pairings=pairings,
        storage=LocalStateStore(state_dir=settings.state_dir, cache_dir=settings.cache_dir),
    )


def _runtime_warnings(settings: Settings) -> tuple[str, ...]:
    warnings: list[str] = []
    if settings.policy.enabled and shutil.which("bluetoothctl") is None:
        warnings.append(
            "bluetoothctl not found on PATH; platform pairing records will not be swept."
        )
    if settings.pairing_scope == "managed" and not settings.managed_addresses:
        warnings.append(
            "No device addresses configured; the managed pairing sweep has nothing to match."
        )
    return tuple(warnings)
