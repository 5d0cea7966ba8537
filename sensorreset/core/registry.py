"""Fixed role-to-device mapping and request resolution."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from sensorreset.core.device import Device
from sensorreset.core.errors import DeviceRegistrationError
from sensorreset.core.model import DeviceRole, RecoveryRequest

LOGGER = logging.getLogger(__name__)


class DeviceRegistry:
    def __init__(self, devices: Iterable[Device] = ()) -> None:
        self._devices: dict[DeviceRole, Device] = {}
        for device in devices:
            if device.role in self._devices:
                raise DeviceRegistrationError(
                    f"A device is already registered for role '{device.role.value}'"
                )
            self._devices[device.role] = device

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        # Role declaration order, independent of registration order.
        return iter([self._devices[role] for role in DeviceRole if role in self._devices])

    def __contains__(self, role: object) -> bool:
        return role in self._devices

    @property
    def roles(self) -> tuple[DeviceRole, ...]:
        return tuple(device.role for device in self)

    def get(self, role: DeviceRole) -> Device | None:
        return self._devices.get(role)

    def resolve(self, request: RecoveryRequest) -> tuple[Device, ...]:
        if request.target_role is None:
            devices = tuple(self)
        else:
            device = self._devices.get(request.target_role)
            devices = (device,) if device is not None else ()

        if not devices:
            LOGGER.warning("No managed device instances found for: %s", request.label)
        return devices
