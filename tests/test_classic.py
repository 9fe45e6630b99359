from __future__ import annotations

import asyncio

import pytest

from linkctl.core.classic import ClassicLinkManager
from linkctl.core.errors import (
    AdapterUnavailable,
    ConnectFailed,
    DisconnectFailed,
    NoBondedDevices,
    NotConnected,
    WriteRejected,
)
from linkctl.core.events import DataReceived
from linkctl.core.model import ClassicConnectOptions, ClassicState

from conftest import FakeClassicAdapter

HC05 = "00:11:22:33:44:55"
PRINTER = "66:77:88:99:AA:BB"


def test_list_bonded_devices(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    devices = asyncio.run(manager.list_bonded_devices())
    assert [d.display_name for d in devices] == ["HC-05", "Printer"]


def test_empty_bonded_list_is_reported() -> None:
    manager = ClassicLinkManager(FakeClassicAdapter(bonded=[]))
    with pytest.raises(NoBondedDevices, match="paired"):
        asyncio.run(manager.list_bonded_devices())


def test_bonded_listing_error_maps_to_adapter_unavailable() -> None:
    adapter = FakeClassicAdapter()

    async def broken():
        raise RuntimeError("dbus down")

    adapter.list_bonded_devices = broken
    with pytest.raises(AdapterUnavailable, match="dbus down"):
        asyncio.run(ClassicLinkManager(adapter).list_bonded_devices())


def test_connect_passes_options(classic_adapter) -> None:
    options = ClassicConnectOptions(channel=3, delimiter="\r\n")
    manager = ClassicLinkManager(classic_adapter, options=options)

    assert asyncio.run(manager.connect(HC05)) is ClassicState.CONNECTED
    assert manager.device.id == HC05
    assert classic_adapter.options == options


def test_connect_failure_returns_to_idle(classic_adapter) -> None:
    classic_adapter.connect_error = OSError("host is down")
    manager = ClassicLinkManager(classic_adapter)

    with pytest.raises(ConnectFailed) as exc:
        asyncio.run(manager.connect(HC05))
    assert exc.value.device_id == HC05
    assert manager.state is ClassicState.IDLE
    assert manager.device is None


def test_adapter_unavailable_is_not_wrapped(classic_adapter) -> None:
    classic_adapter.connect_error = AdapterUnavailable("Bluetooth sockets unavailable")
    manager = ClassicLinkManager(classic_adapter)

    with pytest.raises(AdapterUnavailable) as exc:
        asyncio.run(manager.connect(HC05))
    assert not isinstance(exc.value, ConnectFailed)
    assert manager.state is ClassicState.IDLE


def test_adapter_connect_failed_is_raised_once(classic_adapter) -> None:
    classic_adapter.connect_error = ConnectFailed(HC05, "RFCOMM connect failed on channel 1: refused")
    manager = ClassicLinkManager(classic_adapter)

    with pytest.raises(ConnectFailed) as exc:
        asyncio.run(manager.connect(HC05))
    assert str(exc.value) == f"{HC05}: RFCOMM connect failed on channel 1: refused"
    assert manager.state is ClassicState.IDLE


def test_switching_devices_disconnects_previous_first(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    asyncio.run(manager.connect(PRINTER))

    assert classic_adapter.calls == [
        ("connect", HC05),
        ("disconnect", HC05),
        ("connect", PRINTER),
    ]
    assert manager.device.id == PRINTER


def test_connecting_same_device_toggles_off(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))

    assert asyncio.run(manager.connect(HC05)) is ClassicState.IDLE
    assert classic_adapter.calls == [("connect", HC05), ("disconnect", HC05)]
    assert manager.device is None


def test_failed_disconnect_does_not_block_switch(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    classic_adapter.connections[HC05].disconnect_ack = False

    asyncio.run(manager.connect(PRINTER))
    assert manager.device.id == PRINTER


def test_write_requires_connection(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    with pytest.raises(NotConnected):
        asyncio.run(manager.write("ping"))


def test_write_encodes_text(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))

    asyncio.run(manager.write("olá"))
    asyncio.run(manager.write(b"\x01\x02"))

    assert classic_adapter.connections[HC05].writes == ["olá".encode("utf-8"), b"\x01\x02"]


def test_unacknowledged_write_is_rejected(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    classic_adapter.connections[HC05].write_ack = False

    with pytest.raises(WriteRejected) as exc:
        asyncio.run(manager.write("ping"))
    assert exc.value.device_id == HC05
    assert manager.state is ClassicState.CONNECTED


def test_write_error_is_rejected(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    classic_adapter.connections[HC05].write_error = OSError("broken pipe")

    with pytest.raises(WriteRejected, match="broken pipe"):
        asyncio.run(manager.write("ping"))


def test_write_with_unknown_charset_is_rejected(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter, options=ClassicConnectOptions(charset="no-such-codec"))
    asyncio.run(manager.connect(HC05))

    with pytest.raises(WriteRejected, match="no-such-codec"):
        asyncio.run(manager.write("ping"))
    assert classic_adapter.connections[HC05].writes == []


def test_write_on_silently_closed_link_resets_to_idle(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    classic_adapter.connections[HC05].connected = False

    with pytest.raises(NotConnected):
        asyncio.run(manager.write("ping"))
    assert manager.state is ClassicState.IDLE


def test_disconnect_failure_resets_state_and_surfaces(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    classic_adapter.connections[HC05].disconnect_ack = False

    with pytest.raises(DisconnectFailed) as exc:
        asyncio.run(manager.disconnect())
    assert exc.value.device_id == HC05
    assert manager.state is ClassicState.IDLE


def test_disconnect_requires_connection(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    with pytest.raises(NotConnected):
        asyncio.run(manager.disconnect())


def test_device_disconnected_event_forces_idle(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))

    manager.on_device_disconnected(HC05)

    assert manager.state is ClassicState.IDLE
    assert classic_adapter.connections[HC05].listener_count == 0


def test_disconnect_event_for_previous_link_is_ignored(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))
    asyncio.run(manager.connect(PRINTER))

    manager.on_device_disconnected(HC05)

    assert manager.state is ClassicState.CONNECTED
    assert manager.device.id == PRINTER
    assert classic_adapter.connections[PRINTER].listener_count == 1


def test_disconnect_event_without_id_forces_idle(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    asyncio.run(manager.connect(HC05))

    manager.on_device_disconnected()

    assert manager.state is ClassicState.IDLE


def test_data_delivered_only_while_connected(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    received: list[DataReceived] = []
    manager.subscribe_data(received.append)

    asyncio.run(manager.connect(HC05))
    connection = classic_adapter.connections[HC05]
    assert connection.listener_count == 1

    connection.push("temp=21")
    asyncio.run(manager.disconnect())
    connection.push("late")

    assert [event.data for event in received] == ["temp=21"]
    assert connection.listener_count == 0


def test_data_from_previous_link_is_dropped(classic_adapter) -> None:
    manager = ClassicLinkManager(classic_adapter)
    received: list[str] = []
    manager.subscribe_data(lambda event: received.append(event.data))

    asyncio.run(manager.connect(HC05))
    old = classic_adapter.connections[HC05]
    asyncio.run(manager.connect(PRINTER))

    old.push("stale")
    classic_adapter.connections[PRINTER].push("fresh")

    assert received == ["fresh"]
