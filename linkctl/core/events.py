"""Adapter events and the subscription hub that delivers them."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from linkctl.core.model import Device

LOGGER = logging.getLogger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class DeviceDiscovered:
    device: Device


@dataclass(frozen=True)
class ScanStopped:
    pass


@dataclass(frozen=True)
class LinkDropped:
    device_id: str


@dataclass(frozen=True)
class DeviceDisconnected:
    device_id: str | None = None


@dataclass(frozen=True)
class DataReceived:
    device_id: str
    data: str


class Subscription:
    """Handle returned by `EventHub.subscribe`; `remove()` is idempotent."""

    def __init__(self, hub: EventHub, event_type: type, handler: Callable[[Any], None]) -> None:
        self._hub = hub
        self._event_type = event_type
        self._handler = handler
        self.active = True

    def remove(self) -> None:
        if not self.active:
            return
        self.active = False
        self._hub._discard(self._event_type, self._handler)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.remove()


class EventHub:
    """Typed publish/subscribe used by adapters to push events into the core.

    Handlers run synchronously on the emitting (event loop) thread. A handler
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Subscription:
        self._handlers.setdefault(event_type, []).append(handler)
        return Subscription(self, event_type, handler)

    def emit(self, event: object) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                LOGGER.exception("Handler %r failed for %s", handler, type(event).__name__)

    def handler_count(self, event_type: type | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def _discard(self, event_type: type, handler: Callable[[Any], None]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[event_type]
