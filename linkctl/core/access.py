"""Characteristic reads with a single reconnect-and-retry."""

from __future__ import annotations

import asyncio
import logging

from linkctl.core.connection import ConnectionManager
from linkctl.core.errors import LinkctlError, ReadFailed, UnknownCharacteristic
from linkctl.core.model import ReadResult
from linkctl.transports.base import LEAdapter

LOGGER = logging.getLogger(__name__)


class CharacteristicAccess:
    """Reads characteristics listed in the current service snapshot.

    A failed read forces one fresh connect and is re-issued once. A second
    failure is final. Reads against the same device never overlap.
    """

    def __init__(self, adapter: LEAdapter, connections: ConnectionManager) -> None:
        self._adapter = adapter
        self._connections = connections
        self._locks: dict[str, asyncio.Lock] = {}
        self.last_result: ReadResult | None = None

    async def read(self, device_id: str, service_id: str, characteristic_id: str) -> ReadResult:
        lock = self._locks.setdefault(device_id, asyncio.Lock())
        async with lock:
            self._require_characteristic(device_id, service_id, characteristic_id)
            try:
                data = await self._adapter.read_characteristic(device_id, service_id, characteristic_id)
            except Exception as exc:
                LOGGER.warning(
                    "Read of %s/%s on %s failed (%s), reconnecting for one retry",
                    service_id,
                    characteristic_id,
                    device_id,
                    exc,
                )
                data = await self._retry(device_id, service_id, characteristic_id)

        result = ReadResult(
            device_id=device_id,
            service_id=service_id,
            characteristic_id=characteristic_id,
            data=bytes(data),
        )
        self.last_result = result
        return result

    def release_locks(self) -> None:
        """Drop per-device locks; they are bound to the loop that first contended them."""
        self._locks.clear()

    async def _retry(self, device_id: str, service_id: str, characteristic_id: str) -> bytes:
        try:
            await self._connections.reconnect(device_id)
        except LinkctlError as exc:
            raise ReadFailed(device_id, f"reconnect before retry failed: {exc}") from exc

        self._require_characteristic(device_id, service_id, characteristic_id)
        try:
            return await self._adapter.read_characteristic(device_id, service_id, characteristic_id)
        except Exception as exc:
            raise ReadFailed(device_id, f"read of {characteristic_id} failed after retry: {exc}") from exc

    def _require_characteristic(self, device_id: str, service_id: str, characteristic_id: str) -> None:
        if self._connections.catalog.find(device_id, service_id, characteristic_id) is None:
            raise UnknownCharacteristic(
                device_id,
                f"characteristic {characteristic_id} of service {service_id} is not in the current snapshot",
            )
