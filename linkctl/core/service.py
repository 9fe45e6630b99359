"""Service layer wiring adapters, state machines and subscriptions together."""

from __future__ import annotations

import logging
import socket

from linkctl.core.access import CharacteristicAccess
from linkctl.core.classic import ClassicLinkManager
from linkctl.core.config import load_config
from linkctl.core.connection import ConnectionManager
from linkctl.core.errors import AdapterUnavailable, LinkctlError
from linkctl.core.events import (
    DeviceDiscovered,
    DeviceDisconnected,
    LinkDropped,
    ScanStopped,
    Subscription,
)
from linkctl.core.model import Device, LinkConfig, ScanSession
from linkctl.core.registry import ScanRegistry
from linkctl.transports.base import ClassicAdapter, LEAdapter
from linkctl.transports.ble_gatt import BleakAdapter
from linkctl.transports.rfcomm import RFCOMMAdapter

LOGGER = logging.getLogger(__name__)


class LinkService:
    """Owns one adapter pair and every component built on top of it.

    Adapter event subscriptions are acquired by `start()` and released by
    `close()`. Use it as an async context manager so release also happens
    when the body raises.
    """

    def __init__(
        self,
        *,
        le_adapter: LEAdapter | None = None,
        classic_adapter: ClassicAdapter | None = None,
        config: LinkConfig | None = None,
    ) -> None:
        self.config_sources: tuple[str, ...] = ()
        if config is None:
            loaded = load_config()
            config = loaded.config
            self.config_sources = loaded.sources
        self.config = config
        self.runtime_warnings = _runtime_warnings()

        self.le_adapter = le_adapter or BleakAdapter(connect_timeout_s=config.le.connect_timeout_s)
        self.classic_adapter = classic_adapter or RFCOMMAdapter()

        self.connections = ConnectionManager(self.le_adapter, single_link=config.le.single_link)
        self.registry = ScanRegistry(self.le_adapter, link_state=self.connections.state)
        self.connections.add_listener(self.registry.set_link_state)
        self.access = CharacteristicAccess(self.le_adapter, self.connections)
        self.classic = ClassicLinkManager(self.classic_adapter, options=config.classic)
        self._subscriptions: list[Subscription] = []

    @property
    def started(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        if self._subscriptions:
            return
        le_events = self.le_adapter.events
        self._subscriptions = [
            le_events.subscribe(DeviceDiscovered, lambda event: self.registry.on_discovered(event.device)),
            le_events.subscribe(ScanStopped, lambda _: self.registry.on_scan_stopped()),
            le_events.subscribe(LinkDropped, lambda event: self.connections.link_dropped(event.device_id)),
            self.classic_adapter.events.subscribe(
                DeviceDisconnected,
                lambda event: self.classic.on_device_disconnected(event.device_id),
            ),
        ]
        LOGGER.debug("Subscribed to adapter events")

    async def start_scan(self, window_seconds: int | None = None) -> ScanSession:
        scan = self.config.scan
        return await self.registry.start_scan(
            window_seconds or scan.window_seconds,
            service_filters=scan.service_filters,
            allow_duplicates=scan.allow_duplicates,
        )

    async def retrieve_connected(self) -> tuple[Device, ...]:
        try:
            devices = await self.le_adapter.connected_devices()
        except LinkctlError:
            raise
        except Exception as exc:
            raise AdapterUnavailable(f"Could not list connected devices: {exc}") from exc
        LOGGER.debug("Adapter reports %d connected device(s)", len(devices))
        return self.registry.merge_connected(devices)

    async def close(self) -> None:
        try:
            if self.classic.device is not None:
                try:
                    await self.classic.disconnect()
                except LinkctlError as exc:
                    LOGGER.warning("Classic disconnect during shutdown failed: %s", exc)
        finally:
            for subscription in self._subscriptions:
                subscription.remove()
            self._subscriptions = []
            self.access.release_locks()
            LOGGER.debug("Released adapter event subscriptions")
            for adapter in (self.le_adapter, self.classic_adapter):
                try:
                    await adapter.close()
                except Exception as exc:
                    LOGGER.debug("Error closing %s: %s", type(adapter).__name__, exc)

    async def __aenter__(self) -> LinkService:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def _runtime_warnings() -> tuple[str, ...]:
    warnings: list[str] = []
    if not hasattr(socket, "AF_BLUETOOTH") or not hasattr(socket, "BTPROTO_RFCOMM"):
        warnings.append(
            "Python runtime missing AF_BLUETOOTH/BTPROTO_RFCOMM; Classic link commands will fail."
        )
    return tuple(warnings)
