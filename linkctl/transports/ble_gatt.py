"""LE adapter implementation on top of bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from linkctl.core.errors import AdapterUnavailable, NotConnected
from linkctl.core.events import DeviceDiscovered, EventHub, LinkDropped, ScanStopped
from linkctl.core.model import Device, GattCharacteristic, GattService

LOGGER = logging.getLogger(__name__)


class BleakAdapter:
    """Drives scanning and GATT clients through bleak and pushes events to `events`."""

    def __init__(self, *, connect_timeout_s: float = 10.0) -> None:
        self.events = EventHub()
        self.connect_timeout_s = connect_timeout_s
        self._clients: dict[str, BleakClient] = {}
        self._scanner: BleakScanner | None = None
        self._scan_task: asyncio.Task[None] | None = None
        self._seen: set[str] = set()
        self._names: dict[str, str] = {}
        self._allow_duplicates = True

    async def scan(
        self,
        service_filters: Sequence[str],
        window_seconds: int,
        allow_duplicates: bool,
    ) -> None:
        if self._scanner is not None:
            return
        self._seen.clear()
        self._allow_duplicates = allow_duplicates
        scanner = BleakScanner(
            detection_callback=self._on_detection,
            service_uuids=list(service_filters) or None,
        )
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise AdapterUnavailable(f"Bluetooth radio unavailable: {exc}") from exc
        self._scanner = scanner
        self._scan_task = asyncio.create_task(self._stop_after(window_seconds))

    async def connect(self, device_id: str) -> None:
        stale = self._clients.pop(device_id, None)
        if stale is not None:
            # Popped first so its disconnect callback is not reported as a drop.
            try:
                await stale.disconnect()
            except (BleakError, OSError) as exc:
                LOGGER.debug("Dropping stale client for %s: %s", device_id, exc)

        client = BleakClient(
            device_id,
            disconnected_callback=self._on_disconnected,
            timeout=self.connect_timeout_s,
        )
        await client.connect()
        if not client.is_connected:
            raise BleakError(f"BLE connect failed for {device_id}")
        self._clients[device_id] = client

    async def disconnect(self, device_id: str) -> None:
        client = self._clients.pop(device_id, None)
        if client is not None:
            await client.disconnect()

    async def connected_devices(self) -> list[Device]:
        return [
            Device(id=address, display_name=self._names.get(address, ""))
            for address, client in self._clients.items()
            if client.is_connected
        ]

    async def discover_services(self, device_id: str) -> list[GattService]:
        client = self._require_client(device_id)
        return [
            GattService(
                service_id=service.uuid,
                characteristics=tuple(
                    GattCharacteristic(
                        characteristic_id=characteristic.uuid,
                        properties=tuple(characteristic.properties),
                    )
                    for characteristic in service.characteristics
                ),
            )
            for service in client.services
        ]

    async def read_characteristic(self, device_id: str, service_id: str, characteristic_id: str) -> bytes:
        client = self._require_client(device_id)
        service = client.services.get_service(service_id)
        if service is None:
            raise BleakError(f"Service {service_id} not found on {device_id}")
        characteristic = service.get_characteristic(characteristic_id)
        if characteristic is None:
            raise BleakError(f"Characteristic {characteristic_id} not found in service {service_id}")
        return bytes(await client.read_gatt_char(characteristic))

    async def close(self) -> None:
        if self._scan_task is not None:
            self._scan_task.cancel()
            self._scan_task = None
        await self._stop_scanner()
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await client.disconnect()
            except (BleakError, OSError) as exc:
                LOGGER.debug("Error disconnecting %s during close: %s", client.address, exc)

    def _require_client(self, device_id: str) -> BleakClient:
        client = self._clients.get(device_id)
        if client is None or not client.is_connected:
            raise NotConnected(device_id, "no active GATT client")
        return client

    def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        if not self._allow_duplicates:
            if device.address in self._seen:
                return
            self._seen.add(device.address)
        name = advertisement.local_name or device.name or ""
        if name:
            self._names[device.address] = name
        self.events.emit(
            DeviceDiscovered(
                Device(
                    id=device.address,
                    display_name=name,
                    signal_strength=advertisement.rssi,
                )
            )
        )

    def _on_disconnected(self, client: BleakClient) -> None:
        if self._clients.get(client.address) is not client:
            return
        del self._clients[client.address]
        self.events.emit(LinkDropped(client.address))

    async def _stop_after(self, window_seconds: int) -> None:
        await asyncio.sleep(window_seconds)
        self._scan_task = None
        await self._stop_scanner()

    async def _stop_scanner(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.debug("Error stopping scanner: %s", exc)
        self.events.emit(ScanStopped())
