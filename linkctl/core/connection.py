"""LE connection state machines, one per device id."""

from __future__ import annotations

import logging
from collections.abc import Callable

from linkctl.core.catalog import ServiceCatalog
from linkctl.core.errors import (
    AlreadyConnecting,
    ConnectFailed,
    DisconnectFailed,
    NotConnected,
)
from linkctl.core.model import LinkState, ServiceDescriptor
from linkctl.transports.base import LEAdapter

LOGGER = logging.getLogger(__name__)

TransitionListener = Callable[[str, LinkState], None]

_VALID_TRANSITIONS: dict[LinkState, frozenset[LinkState]] = {
    LinkState.DISCONNECTED: frozenset({LinkState.CONNECTING}),
    LinkState.CONNECTING: frozenset({LinkState.CONNECTED, LinkState.DISCONNECTED}),
    # CONNECTED -> CONNECTING is the forced reconnect used by read retries.
    LinkState.CONNECTED: frozenset({LinkState.DISCONNECTING, LinkState.CONNECTING, LinkState.DISCONNECTED}),
    LinkState.DISCONNECTING: frozenset({LinkState.DISCONNECTED}),
}


class ConnectionStateMachine:
    """Owns the link state of a single LE device.

    State checks happen before the first await, so a second `connect` issued
    while one is in flight is rejected instead of racing it.
    """

    def __init__(
        self,
        device_id: str,
        adapter: LEAdapter,
        catalog: ServiceCatalog,
        *,
        on_transition: TransitionListener | None = None,
    ) -> None:
        self.device_id = device_id
        self._adapter = adapter
        self._catalog = catalog
        self._on_transition = on_transition
        self._state = LinkState.DISCONNECTED
        self._attempt = 0

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is LinkState.CONNECTED

    async def connect(self) -> tuple[ServiceDescriptor, ...]:
        if self._state is not LinkState.DISCONNECTED:
            raise AlreadyConnecting(self.device_id, f"cannot connect while {self._state.value}")
        return await self._establish()

    async def reconnect(self) -> tuple[ServiceDescriptor, ...]:
        """Force a fresh link even when already connected, then re-enumerate services."""
        if self._state in (LinkState.CONNECTING, LinkState.DISCONNECTING):
            raise AlreadyConnecting(self.device_id, f"cannot reconnect while {self._state.value}")
        self._catalog.invalidate(self.device_id)
        return await self._establish()

    async def disconnect(self) -> None:
        if self._state is not LinkState.CONNECTED:
            raise NotConnected(self.device_id, f"cannot disconnect while {self._state.value}")

        self._transition_to(LinkState.DISCONNECTING)
        self._catalog.invalidate(self.device_id)
        try:
            await self._adapter.disconnect(self.device_id)
        except Exception as exc:
            raise DisconnectFailed(self.device_id, f"adapter disconnect failed: {exc}") from exc
        finally:
            # A link drop may already have moved us to DISCONNECTED.
            if self._state is LinkState.DISCONNECTING:
                self._transition_to(LinkState.DISCONNECTED)

    def link_dropped(self) -> None:
        if self._state is LinkState.DISCONNECTED:
            return
        LOGGER.info("Link to %s dropped while %s", self.device_id, self._state.value)
        self._catalog.invalidate(self.device_id)
        self._set_state(LinkState.DISCONNECTED)

    async def _establish(self) -> tuple[ServiceDescriptor, ...]:
        self._attempt += 1
        attempt = self._attempt
        self._transition_to(LinkState.CONNECTING)
        try:
            await self._adapter.connect(self.device_id)
        except Exception as exc:
            if attempt == self._attempt and self._state is LinkState.CONNECTING:
                self._transition_to(LinkState.DISCONNECTED)
            raise ConnectFailed(self.device_id, f"connect failed: {exc}") from exc

        if attempt != self._attempt or self._state is not LinkState.CONNECTING:
            raise ConnectFailed(self.device_id, "link dropped while connecting")

        self._transition_to(LinkState.CONNECTED)
        return await self._catalog.discover(self.device_id)

    def _transition_to(self, new_state: LinkState) -> None:
        if new_state not in _VALID_TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid state transition for {self.device_id}: {self._state.value} -> {new_state.value}"
            )
        self._set_state(new_state)

    def _set_state(self, new_state: LinkState) -> None:
        old_state = self._state
        self._state = new_state
        LOGGER.debug("%s: %s -> %s", self.device_id, old_state.value, new_state.value)
        if self._on_transition is not None:
            self._on_transition(self.device_id, new_state)


class ConnectionManager:
    """Creates and owns the per-device state machines and the service catalog.

    With `single_link` enabled, connecting one device first disconnects every
    other connected device, one at a time.
    """

    def __init__(self, adapter: LEAdapter, *, single_link: bool = False) -> None:
        self._adapter = adapter
        self.single_link = single_link
        self._machines: dict[str, ConnectionStateMachine] = {}
        self._pending: set[str] = set()
        self._listeners: list[TransitionListener] = []
        self.catalog = ServiceCatalog(adapter, self.state)

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def machine(self, device_id: str) -> ConnectionStateMachine:
        machine = self._machines.get(device_id)
        if machine is None:
            machine = ConnectionStateMachine(
                device_id,
                self._adapter,
                self.catalog,
                on_transition=self._notify,
            )
            self._machines[device_id] = machine
        return machine

    def state(self, device_id: str) -> LinkState:
        machine = self._machines.get(device_id)
        return machine.state if machine else LinkState.DISCONNECTED

    def connected_ids(self) -> tuple[str, ...]:
        return tuple(device_id for device_id, machine in self._machines.items() if machine.is_connected)

    async def connect(self, device_id: str) -> tuple[ServiceDescriptor, ...]:
        machine = self.machine(device_id)
        if device_id in self._pending or machine.state is not LinkState.DISCONNECTED:
            raise AlreadyConnecting(device_id, f"cannot connect while {machine.state.value}")

        self._pending.add(device_id)
        try:
            if self.single_link:
                for other_id in self.connected_ids():
                    if other_id == device_id:
                        continue
                    LOGGER.info("Disconnecting %s before connecting %s", other_id, device_id)
                    try:
                        await self._machines[other_id].disconnect()
                    except DisconnectFailed as exc:
                        LOGGER.warning("Ignoring failed disconnect of %s: %s", other_id, exc)
            return await machine.connect()
        finally:
            self._pending.discard(device_id)

    async def disconnect(self, device_id: str) -> None:
        machine = self._machines.get(device_id)
        if machine is None:
            raise NotConnected(device_id, "device was never connected")
        await machine.disconnect()

    async def reconnect(self, device_id: str) -> tuple[ServiceDescriptor, ...]:
        if device_id in self._pending:
            raise AlreadyConnecting(device_id, "a connect is already in flight")
        return await self.machine(device_id).reconnect()

    async def connect_or_toggle(self, device_id: str) -> LinkState:
        if self.state(device_id) is LinkState.CONNECTED:
            await self.disconnect(device_id)
        else:
            await self.connect(device_id)
        return self.state(device_id)

    def link_dropped(self, device_id: str) -> None:
        machine = self._machines.get(device_id)
        if machine is not None:
            machine.link_dropped()

    def _notify(self, device_id: str, new_state: LinkState) -> None:
        for listener in list(self._listeners):
            listener(device_id, new_state)
