"""Per-device service/characteristic snapshots."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from linkctl.core.errors import DiscoveryFailed, NotConnected
from linkctl.core.model import GattService, LinkState, ServiceDescriptor
from linkctl.transports.base import LEAdapter

LOGGER = logging.getLogger(__name__)


def flatten_services(services: Iterable[GattService]) -> tuple[ServiceDescriptor, ...]:
    return tuple(
        ServiceDescriptor(
            service_id=service.service_id.lower(),
            characteristic_id=characteristic.characteristic_id.lower(),
            properties=frozenset(prop.lower() for prop in characteristic.properties),
        )
        for service in services
        for characteristic in service.characteristics
    )


class ServiceCatalog:
    """Holds one immutable descriptor tuple per connected device.

    A snapshot is only valid while its device is connected; the connection
    state machine invalidates it on every path away from `CONNECTED`.
    """

    def __init__(self, adapter: LEAdapter, link_state: Callable[[str], LinkState]) -> None:
        self._adapter = adapter
        self._link_state = link_state
        self._snapshots: dict[str, tuple[ServiceDescriptor, ...]] = {}

    async def discover(self, device_id: str) -> tuple[ServiceDescriptor, ...]:
        if self._link_state(device_id) is not LinkState.CONNECTED:
            raise NotConnected(device_id, "service discovery requires a connected link")

        try:
            services = await self._adapter.discover_services(device_id)
            snapshot = flatten_services(services)
        except Exception as exc:
            self._snapshots.pop(device_id, None)
            raise DiscoveryFailed(device_id, f"service discovery failed: {exc}") from exc

        if self._link_state(device_id) is not LinkState.CONNECTED:
            self._snapshots.pop(device_id, None)
            raise DiscoveryFailed(device_id, "link dropped during service discovery")

        self._snapshots[device_id] = snapshot
        LOGGER.debug("Discovered %d characteristic(s) on %s", len(snapshot), device_id)
        return snapshot

    def snapshot(self, device_id: str) -> tuple[ServiceDescriptor, ...] | None:
        return self._snapshots.get(device_id)

    def find(self, device_id: str, service_id: str, characteristic_id: str) -> ServiceDescriptor | None:
        service_id = service_id.lower()
        characteristic_id = characteristic_id.lower()
        for descriptor in self._snapshots.get(device_id, ()):
            if descriptor.service_id == service_id and descriptor.characteristic_id == characteristic_id:
                return descriptor
        return None

    def invalidate(self, device_id: str) -> None:
        if self._snapshots.pop(device_id, None) is not None:
            LOGGER.debug("Invalidated service snapshot for %s", device_id)
