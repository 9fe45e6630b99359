from __future__ import annotations

import asyncio
import socket

import pytest

from linkctl.core.events import DeviceDiscovered
from linkctl.core.model import ClassicState, Device, LEConfig, LinkConfig, LinkState
from linkctl.core.service import LinkService, _runtime_warnings

from conftest import BATTERY_LEVEL, BATTERY_SERVICE


def _service(le_adapter, classic_adapter, **le_options) -> LinkService:
    return LinkService(
        le_adapter=le_adapter,
        classic_adapter=classic_adapter,
        config=LinkConfig(le=LEConfig(**le_options)),
    )


def test_subscriptions_released_on_error_exit(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter)

    async def scenario() -> None:
        async with service:
            assert le_adapter.events.handler_count() == 3
            assert classic_adapter.events.handler_count() == 1
            raise RuntimeError("frontend crashed")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert not service.started
    assert le_adapter.events.handler_count() == 0
    assert classic_adapter.events.handler_count() == 0
    assert le_adapter.closed
    assert classic_adapter.closed


def test_events_after_close_do_not_reach_registry(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter)

    async def scenario() -> None:
        async with service:
            await service.start_scan()
        le_adapter.events.emit(DeviceDiscovered(Device(id="AA:01")))

    asyncio.run(scenario())
    assert service.registry.devices == ()


def test_start_is_idempotent(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter)
    service.start()
    service.start()
    assert le_adapter.events.handler_count() == 3
    asyncio.run(service.close())


def test_close_disconnects_classic_link(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter)

    async def scenario() -> None:
        async with service:
            await service.classic.connect("00:11:22:33:44:55")

    asyncio.run(scenario())
    assert service.classic.state is ClassicState.IDLE
    assert ("disconnect", "00:11:22:33:44:55") in classic_adapter.calls


def test_single_link_config_is_applied(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter, single_link=True)
    assert service.connections.single_link is True


def test_scan_uses_configured_window(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter)

    async def scenario():
        async with service:
            return await service.start_scan()

    session = asyncio.run(scenario())
    assert session.window_seconds == 5
    assert ("scan", "5") in le_adapter.calls


def test_runtime_warning_when_bluetooth_sockets_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delattr(socket, "AF_BLUETOOTH", raising=False)
    warnings = _runtime_warnings()
    assert any("AF_BLUETOOTH" in warning for warning in warnings)


def test_reads_contend_across_separate_event_loops(le_adapter, classic_adapter) -> None:
    service = _service(le_adapter, classic_adapter)

    async def contended_reads():
        async with service:
            if service.connections.state("AA:01") is not LinkState.CONNECTED:
                await service.connections.connect("AA:01")
            return await asyncio.gather(
                service.access.read("AA:01", BATTERY_SERVICE, BATTERY_LEVEL),
                service.access.read("AA:01", BATTERY_SERVICE, BATTERY_LEVEL),
            )

    first = asyncio.run(contended_reads())
    second = asyncio.run(contended_reads())
    assert len(first) == len(second) == 2
    assert le_adapter.count("read") == 4
