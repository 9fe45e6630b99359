from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

import pytest

from linkctl.core.events import DataReceived, EventHub, Subscription
from linkctl.core.model import ClassicConnectOptions, Device, GattCharacteristic, GattService

BATTERY_SERVICE = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL = "00002a19-0000-1000-8000-00805f9b34fb"
DEVICE_INFO_SERVICE = "0000180a-0000-1000-8000-00805f9b34fb"
MODEL_NUMBER = "00002a24-0000-1000-8000-00805f9b34fb"


def band_services() -> list[GattService]:
    return [
        GattService(
            service_id=BATTERY_SERVICE,
            characteristics=(GattCharacteristic(BATTERY_LEVEL, ("read", "notify")),),
        ),
        GattService(
            service_id=DEVICE_INFO_SERVICE,
            characteristics=(GattCharacteristic(MODEL_NUMBER, ("read",)),),
        ),
    ]


class FakeLEAdapter:
    def __init__(self) -> None:
        self.events = EventHub()
        self.calls: list[tuple[str, ...]] = []
        self.services: dict[str, list[GattService]] = {}
        self.scan_error: Exception | None = None
        self.connect_errors: list[Exception] = []
        self.disconnect_error: Exception | None = None
        self.discover_error: Exception | None = None
        self.read_results: list[bytes | Exception] = []
        self.connect_gate: asyncio.Event | None = None
        self.linked: dict[str, str] = {}
        self.closed = False

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def connected_devices(self) -> list[Device]:
        self.calls.append(("connected_devices",))
        return [Device(id=device_id, display_name=name) for device_id, name in self.linked.items()]

    async def scan(self, service_filters: Sequence[str], window_seconds: int, allow_duplicates: bool) -> None:
        self.calls.append(("scan", str(window_seconds)))
        if self.scan_error is not None:
            raise self.scan_error

    async def connect(self, device_id: str) -> None:
        self.calls.append(("connect", device_id))
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.linked.setdefault(device_id, "")

    async def disconnect(self, device_id: str) -> None:
        self.calls.append(("disconnect", device_id))
        self.linked.pop(device_id, None)
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def discover_services(self, device_id: str) -> list[GattService]:
        self.calls.append(("discover", device_id))
        if self.discover_error is not None:
            raise self.discover_error
        return list(self.services.get(device_id, []))

    async def read_characteristic(self, device_id: str, service_id: str, characteristic_id: str) -> bytes:
        self.calls.append(("read", device_id, characteristic_id))
        await asyncio.sleep(0)
        result = self.read_results.pop(0) if self.read_results else b"\x00"
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


class FakeClassicConnection:
    def __init__(self, device: Device, calls: list[tuple[str, ...]]) -> None:
        self.device = device
        self._calls = calls
        self._events = EventHub()
        self.connected = True
        self.write_ack = True
        self.write_error: Exception | None = None
        self.disconnect_ack = True
        self.writes: list[bytes] = []

    async def is_connected(self) -> bool:
        return self.connected

    async def write(self, payload: bytes) -> bool:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(payload)
        return self.write_ack

    async def disconnect(self) -> bool:
        self._calls.append(("disconnect", self.device.id))
        self.connected = False
        return self.disconnect_ack

    def on_data_received(self, handler: Callable[[DataReceived], None]) -> Subscription:
        return self._events.subscribe(DataReceived, handler)

    def push(self, data: str) -> None:
        self._events.emit(DataReceived(device_id=self.device.id, data=data))

    @property
    def listener_count(self) -> int:
        return self._events.handler_count()


class FakeClassicAdapter:
    def __init__(self, bonded: list[Device] | None = None) -> None:
        self.events = EventHub()
        self.bonded = bonded if bonded is not None else []
        self.calls: list[tuple[str, ...]] = []
        self.connections: dict[str, FakeClassicConnection] = {}
        self.connect_error: Exception | None = None
        self.options: ClassicConnectOptions | None = None
        self.closed = False

    async def list_bonded_devices(self) -> list[Device]:
        return list(self.bonded)

    async def connect_to_device(self, device_id: str, options: ClassicConnectOptions) -> FakeClassicConnection:
        self.calls.append(("connect", device_id))
        self.options = options
        if self.connect_error is not None:
            raise self.connect_error
        names = {device.id: device.display_name for device in self.bonded}
        connection = FakeClassicConnection(Device(id=device_id, display_name=names.get(device_id, "")), self.calls)
        self.connections[device_id] = connection
        return connection

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))


@pytest.fixture
def le_adapter() -> FakeLEAdapter:
    adapter = FakeLEAdapter()
    adapter.services["AA:01"] = band_services()
    adapter.services["BB:02"] = band_services()
    return adapter


@pytest.fixture
def classic_adapter() -> FakeClassicAdapter:
    return FakeClassicAdapter(
        bonded=[
            Device(id="00:11:22:33:44:55", display_name="HC-05"),
            Device(id="66:77:88:99:AA:BB", display_name="Printer"),
        ]
    )
