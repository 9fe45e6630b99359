"""Adapter interfaces consumed by the core.

Adapters wrap the native radio stack. They push events through their
`events` hub and perform the awaited operations below. The core never talks
to a radio any other way, so tests drive it with in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from linkctl.core.events import DataReceived, EventHub, Subscription
from linkctl.core.model import ClassicConnectOptions, Device, GattService


class LEAdapter(Protocol):
    """Emits `DeviceDiscovered`, `ScanStopped` and `LinkDropped`."""

    events: EventHub

    async def scan(
        self,
        service_filters: Sequence[str],
        window_seconds: int,
        allow_duplicates: bool,
    ) -> None:
        """Start a discovery window; raise `AdapterUnavailable` when the radio is off."""

    async def connect(self, device_id: str) -> None:
        """Establish a fresh link, replacing any existing handle."""

    async def disconnect(self, device_id: str) -> None: ...

    async def connected_devices(self) -> list[Device]:
        """Peripherals that currently hold an open link through this adapter."""

    async def discover_services(self, device_id: str) -> list[GattService]: ...

    async def read_characteristic(
        self,
        device_id: str,
        service_id: str,
        characteristic_id: str,
    ) -> bytes: ...

    async def close(self) -> None: ...


class ClassicConnection(Protocol):
    device: Device

    async def is_connected(self) -> bool: ...

    async def write(self, payload: bytes) -> bool: ...

    async def disconnect(self) -> bool: ...

    def on_data_received(self, handler: Callable[[DataReceived], None]) -> Subscription: ...


class ClassicAdapter(Protocol):
    """Emits `DeviceDisconnected` when the active stream link goes away."""

    events: EventHub

    async def list_bonded_devices(self) -> list[Device]: ...

    async def connect_to_device(
        self,
        device_id: str,
        options: ClassicConnectOptions,
    ) -> ClassicConnection: ...

    async def close(self) -> None: ...
