"""Scan session and de-duplicated device table."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import replace

from linkctl.core.errors import AdapterUnavailable
from linkctl.core.model import UNNAMED_DEVICE, Device, LinkState, ScanSession
from linkctl.transports.base import LEAdapter

LOGGER = logging.getLogger(__name__)


class ScanRegistry:
    """Merges discovery events into a stable, first-seen ordered device table."""

    def __init__(
        self,
        adapter: LEAdapter,
        *,
        link_state: Callable[[str], LinkState] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._adapter = adapter
        self._link_state = link_state
        self._clock = clock
        self._session = ScanSession()
        self._order: list[str] = []
        self._devices: dict[str, Device] = {}

    @property
    def session(self) -> ScanSession:
        return self._session

    @property
    def devices(self) -> tuple[Device, ...]:
        return tuple(self._devices[device_id] for device_id in self._order)

    def get(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    async def start_scan(
        self,
        window_seconds: int,
        *,
        service_filters: Sequence[str] = (),
        allow_duplicates: bool = True,
    ) -> ScanSession:
        if self._session.active:
            LOGGER.debug("Scan already active, ignoring start request")
            return self._session
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {window_seconds}")

        # Marked active before the await so a concurrent start is a no-op.
        self._session = ScanSession(active=True, started_at=self._clock(), window_seconds=window_seconds)
        try:
            await self._adapter.scan(tuple(service_filters), window_seconds, allow_duplicates)
        except AdapterUnavailable:
            self._session = ScanSession()
            raise
        except Exception as exc:
            self._session = ScanSession()
            raise AdapterUnavailable(f"Could not start scan: {exc}") from exc
        LOGGER.info("Scanning for %ss", window_seconds)
        return self._session

    def on_discovered(self, device: Device) -> None:
        if not self._session.active:
            LOGGER.debug("Ignoring discovery of %s outside a scan window", device.id)
            return

        name = device.display_name or UNNAMED_DEVICE
        known = self._devices.get(device.id)
        if known is None:
            self._order.append(device.id)
            self._devices[device.id] = replace(device, display_name=name, link_state=self._owned_state(device.id))
            LOGGER.debug("Discovered %s (%s)", device.id, name)
            return
        # The adapter knows nothing about application link bookkeeping.
        self._devices[device.id] = replace(device, display_name=name, link_state=known.link_state)

    def merge_connected(self, devices: Sequence[Device]) -> tuple[Device, ...]:
        """Add or refresh devices the adapter reports as linked, outside any scan window."""
        merged: list[Device] = []
        for device in devices:
            known = self._devices.get(device.id)
            if known is None:
                self._order.append(device.id)
                name = device.display_name or UNNAMED_DEVICE
                signal_strength = device.signal_strength
            else:
                name = device.display_name or known.display_name
                signal_strength = device.signal_strength or known.signal_strength
            entry = replace(
                device,
                display_name=name,
                signal_strength=signal_strength,
                link_state=self._owned_state(device.id),
            )
            self._devices[device.id] = entry
            merged.append(entry)
        return tuple(merged)

    def on_scan_stopped(self) -> None:
        if self._session.active:
            LOGGER.info("Scan stopped with %d device(s)", len(self._order))
        self._session = replace(self._session, active=False)

    def set_link_state(self, device_id: str, state: LinkState) -> None:
        known = self._devices.get(device_id)
        if known is not None:
            self._devices[device_id] = replace(known, link_state=state)

    def _owned_state(self, device_id: str) -> LinkState:
        if self._link_state is None:
            return LinkState.DISCONNECTED
        return self._link_state(device_id)
