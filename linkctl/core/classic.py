"""Single-slot manager for stream-oriented Classic links."""

from __future__ import annotations

import logging
from collections.abc import Callable

from linkctl.core.errors import (
    AdapterUnavailable,
    AlreadyConnecting,
    ConnectFailed,
    DisconnectFailed,
    LinkctlError,
    NoBondedDevices,
    NotConnected,
    WriteRejected,
)
from linkctl.core.events import DataReceived, EventHub, Subscription
from linkctl.core.model import ClassicConnectOptions, ClassicState, Device
from linkctl.transports.base import ClassicAdapter, ClassicConnection

LOGGER = logging.getLogger(__name__)


class ClassicLinkManager:
    """Holds at most one Classic connection for the whole process.

    Inbound data is forwarded to `subscribe_data` handlers only while the
    link is connected; the per-connection subscription is removed on every
    transition back to `IDLE`.
    """

    def __init__(self, adapter: ClassicAdapter, *, options: ClassicConnectOptions | None = None) -> None:
        self._adapter = adapter
        self.options = options or ClassicConnectOptions()
        self._state = ClassicState.IDLE
        self._connection: ClassicConnection | None = None
        self._data_subscription: Subscription | None = None
        self._data_hub = EventHub()
        self._target: str | None = None

    @property
    def state(self) -> ClassicState:
        return self._state

    @property
    def device(self) -> Device | None:
        return self._connection.device if self._connection else None

    async def list_bonded_devices(self) -> list[Device]:
        try:
            devices = await self._adapter.list_bonded_devices()
        except LinkctlError:
            raise
        except Exception as exc:
            raise AdapterUnavailable(f"Could not list bonded devices: {exc}") from exc
        if not devices:
            raise NoBondedDevices(None, "Could not find any paired devices. Pair the device first.")
        return list(devices)

    async def connect(self, device_id: str) -> ClassicState:
        if self._state is ClassicState.CONNECTING:
            raise AlreadyConnecting(device_id, "another Classic connect is in flight")

        if self._state is ClassicState.CONNECTED:
            current_id = self._connection.device.id if self._connection else None
            if current_id == device_id:
                await self.disconnect()
                return self._state
            try:
                await self.disconnect()
            except DisconnectFailed as exc:
                LOGGER.warning("Ignoring failed disconnect of %s: %s", current_id, exc)

        self._state = ClassicState.CONNECTING
        self._target = device_id
        try:
            connection = await self._adapter.connect_to_device(device_id, self.options)
        except LinkctlError:
            self._state = ClassicState.IDLE
            raise
        except Exception as exc:
            self._state = ClassicState.IDLE
            raise ConnectFailed(device_id, f"unable to connect: {exc}") from exc

        if self._state is not ClassicState.CONNECTING:
            # Disconnect event arrived while connecting.
            try:
                await connection.disconnect()
            except Exception as exc:
                LOGGER.debug("Closing dropped connection to %s failed: %s", device_id, exc)
            raise ConnectFailed(device_id, "link dropped while connecting")

        self._connection = connection
        self._data_subscription = connection.on_data_received(self._deliver)
        self._state = ClassicState.CONNECTED
        LOGGER.info("Classic link to %s connected", device_id)
        return self._state

    async def write(self, payload: bytes | str) -> None:
        connection = self._connection
        if self._state is not ClassicState.CONNECTED or connection is None:
            raise NotConnected(None, "no Classic device is connected")

        device_id = connection.device.id
        if not await connection.is_connected():
            self._teardown()
            raise NotConnected(device_id, "link is no longer connected")

        try:
            data = payload.encode(self.options.charset) if isinstance(payload, str) else bytes(payload)
        except (LookupError, UnicodeEncodeError) as exc:
            raise WriteRejected(device_id, f"cannot encode payload as {self.options.charset}: {exc}") from exc
        try:
            acknowledged = await connection.write(data)
        except Exception as exc:
            raise WriteRejected(device_id, f"write failed: {exc}") from exc
        if not acknowledged:
            raise WriteRejected(device_id, "write was not acknowledged")

    async def disconnect(self) -> None:
        connection = self._connection
        if self._state is not ClassicState.CONNECTED or connection is None:
            raise NotConnected(None, "no Classic device is connected")

        device_id = connection.device.id
        self._teardown()
        try:
            ok = await connection.disconnect()
        except Exception as exc:
            raise DisconnectFailed(device_id, f"disconnect failed: {exc}") from exc
        if not ok:
            raise DisconnectFailed(device_id, "adapter did not acknowledge disconnect")

    def on_device_disconnected(self, device_id: str | None = None) -> None:
        if self._state is ClassicState.IDLE:
            return
        target = self._connection.device.id if self._connection else self._target
        if device_id is not None and target is not None and target != device_id:
            LOGGER.debug("Ignoring disconnect of %s, current link is %s", device_id, target)
            return
        LOGGER.info("Classic link to %s disconnected", device_id or "device")
        self._teardown()

    def subscribe_data(self, handler: Callable[[DataReceived], None]) -> Subscription:
        return self._data_hub.subscribe(DataReceived, handler)

    def _deliver(self, event: DataReceived) -> None:
        if self._state is not ClassicState.CONNECTED or self._connection is None:
            return
        if event.device_id != self._connection.device.id:
            return
        self._data_hub.emit(event)

    def _teardown(self) -> None:
        if self._data_subscription is not None:
            self._data_subscription.remove()
            self._data_subscription = None
        self._connection = None
        self._target = None
        self._state = ClassicState.IDLE
