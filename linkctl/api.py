"""Stable public API for building tooling on top of linkctl.

This module is the supported integration surface for third-party callers
(GUI/TUI/services/scripts). It exposes read-only views of the scan session,
device table, link states and service snapshots, plus the commands a
frontend issues. Avoid importing from internal modules unless intentionally
depending on non-stable internals.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from linkctl.core.errors import (
    AdapterUnavailable,
    AlreadyConnecting,
    ConfigLoadError,
    ConfigValidationError,
    ConnectFailed,
    DeviceLinkError,
    DeviceSelectionError,
    DisconnectFailed,
    DiscoveryFailed,
    LinkctlError,
    NoBondedDevices,
    NotConnected,
    ReadFailed,
    UnknownCharacteristic,
    WriteRejected,
)
from linkctl.core.events import DataReceived, Subscription
from linkctl.core.model import (
    ClassicState,
    Device,
    LinkConfig,
    LinkState,
    ReadResult,
    ScanSession,
    ServiceDescriptor,
)
from linkctl.core.service import LinkService
from linkctl.transports.base import ClassicAdapter, LEAdapter

__all__ = [
    "LinkctlError",
    "AdapterUnavailable",
    "AlreadyConnecting",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConnectFailed",
    "DeviceLinkError",
    "DeviceSelectionError",
    "DisconnectFailed",
    "DiscoveryFailed",
    "NoBondedDevices",
    "NotConnected",
    "ReadFailed",
    "UnknownCharacteristic",
    "WriteRejected",
    "ClassicState",
    "DataReceived",
    "Device",
    "LinkState",
    "ReadResult",
    "ScanSession",
    "ServiceDescriptor",
    "Client",
]

T = TypeVar("T")


class Client:
    """Public client for interacting with linkctl core capabilities.

    Use as an async context manager; adapter event subscriptions are held
    for the lifetime of the block.
    """

    def __init__(
        self,
        *,
        le_adapter: LEAdapter | None = None,
        classic_adapter: ClassicAdapter | None = None,
        config: LinkConfig | None = None,
    ) -> None:
        self._service = LinkService(le_adapter=le_adapter, classic_adapter=classic_adapter, config=config)
        self.last_error: LinkctlError | None = None

    async def __aenter__(self) -> Client:
        self._service.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self._service.close()

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    @property
    def scan_session(self) -> ScanSession:
        return self._service.registry.session

    def devices(self, *, connected_first: bool = False) -> list[Device]:
        devices = list(self._service.registry.devices)
        if connected_first:
            devices.sort(key=lambda d: d.link_state is not LinkState.CONNECTED)
        return devices

    def link_state(self, device_id: str) -> LinkState:
        return self._service.connections.state(device_id)

    def services(self, device_id: str) -> tuple[ServiceDescriptor, ...]:
        return self._service.connections.catalog.snapshot(device_id) or ()

    @property
    def last_read(self) -> ReadResult | None:
        return self._service.access.last_result

    @property
    def classic_state(self) -> ClassicState:
        return self._service.classic.state

    @property
    def classic_device(self) -> Device | None:
        return self._service.classic.device

    async def start_scan(self, window_seconds: int | None = None) -> ScanSession:
        return await self._record(self._service.start_scan(window_seconds))

    async def retrieve_connected(self) -> tuple[Device, ...]:
        """Merge peripherals already linked through the adapter into the device table."""
        return await self._record(self._service.retrieve_connected())

    async def connect_or_toggle(self, device_id: str) -> LinkState:
        return await self._record(self._service.connections.connect_or_toggle(device_id))

    async def read_characteristic(self, device_id: str, service_id: str, characteristic_id: str) -> ReadResult:
        return await self._record(self._service.access.read(device_id, service_id, characteristic_id))

    async def list_bonded_devices(self) -> list[Device]:
        return await self._record(self._service.classic.list_bonded_devices())

    async def connect_classic(self, device_id: str) -> ClassicState:
        return await self._record(self._service.classic.connect(device_id))

    async def write(self, payload: bytes | str) -> None:
        await self._record(self._service.classic.write(payload))

    async def disconnect(self) -> None:
        await self._record(self._service.classic.disconnect())

    def subscribe_data(self, handler: Callable[[DataReceived], None]) -> Subscription:
        return self._service.classic.subscribe_data(handler)

    async def _record(self, operation: Awaitable[T]) -> T:
        try:
            result = await operation
        except LinkctlError as exc:
            self.last_error = exc
            raise
        self.last_error = None
        return result
