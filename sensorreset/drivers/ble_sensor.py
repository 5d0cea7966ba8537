"""BLE sensor connection backed by bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from sensorreset.core.errors import DeviceConnectError, DisconnectError
from sensorreset.core.model import ConnectionState, DeviceRole
from sensorreset.core.scheduler import CallbackScheduler

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]


def _bleak_client_factory(address: str, **kwargs: Any) -> Any:
    try:
        from bleak import BleakClient  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise DeviceConnectError(
            "BLE sensors require 'bleak'. Install dependency and retry."
        ) from exc
    return BleakClient(address, **kwargs)


class BleakSensor:
    """One managed sensor role and its (at most one) live BLE client.

    ``disconnect`` and ``forget`` share a lock so overlapping recovery runs
    see a consistent client reference.
    """

    def __init__(
        self,
        role: DeviceRole,
        *,
        name: str | None = None,
        address: str | None = None,
        scheduler: CallbackScheduler | None = None,
        reconnect_delay_s: float = 2.0,
        timeout_s: float = 10.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._role = role
        self._name = name or role.default_name
        self.address = address
        self.scheduler = scheduler
        self.reconnect_delay_s = reconnect_delay_s
        self.timeout_s = timeout_s
        self._client_factory = client_factory or _bleak_client_factory
        self._client: Any = None
        self._disconnect_requested = False
        self._reconnect_handle: int | None = None
        self._lock: asyncio.Lock | None = None

    @property
    def role(self) -> DeviceRole:
        return self._role

    @property
    def display_name(self) -> str:
        return self._name

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self.is_connected() else ConnectionState.DISCONNECTED

    def is_connected(self) -> bool:
        return bool(self._client is not None and self._client.is_connected)

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def connect(self) -> None:
        async with self._get_lock():
            if self.is_connected():
                return
            if not self.address:
                raise DeviceConnectError(f"{self._name} has no known address; pair it first")
            self._disconnect_requested = False
            client = self._client_factory(
                self.address,
                timeout=self.timeout_s,
                disconnected_callback=self._on_disconnected,
            )
            try:
                await client.connect()
            except DeviceConnectError:
                raise
            except Exception as exc:
                raise DeviceConnectError(f"BLE connect failed for {self.address}: {exc}") from exc
            self._client = client
            LOGGER.info("Connected %s (%s)", self._name, self.address)

    async def disconnect(self) -> None:
        async with self._get_lock():
            self._disconnect_requested = True
            self._cancel_reconnect()
            client = self._client
            if client is None or not client.is_connected:
                return
            try:
                result = await client.disconnect()
            except Exception as exc:
                raise DisconnectError(f"BLE disconnect failed for {self._name}: {exc}") from exc
            if result is False:
                raise DisconnectError(f"BLE stack refused to disconnect {self._name}")
            LOGGER.info("Disconnected %s", self._name)

    async def forget(self) -> None:
        async with self._get_lock():
            self._disconnect_requested = True
            self._cancel_reconnect()
            client = self._client
            if client is not None and client.is_connected:
                LOGGER.warning("Forgetting %s while its link still reports connected", self._name)
            self._client = None
            if self.address is not None:
                LOGGER.info("Forgot cached identity %s for %s", self.address, self._name)
            self.address = None

    def _on_disconnected(self, _client: Any) -> None:
        if self._disconnect_requested or self.scheduler is None or self.address is None:
            return
        LOGGER.warning("%s disconnected unexpectedly; reconnecting in %.1fs", self._name, self.reconnect_delay_s)
        self._cancel_reconnect()
        self._reconnect_handle = self.scheduler.call_later(self.reconnect_delay_s, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        task = asyncio.get_running_loop().create_task(self.connect())
        task.add_done_callback(self._log_reconnect_result)

    def _log_reconnect_result(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Reconnect of %s failed: %s", self._name, exc)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None and self.scheduler is not None:
            self.scheduler.cancel(self._reconnect_handle)
        self._reconnect_handle = None
