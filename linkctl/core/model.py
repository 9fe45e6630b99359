"""Core data models shared by the registry, state machines, adapters and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

UNNAMED_DEVICE = "NO NAME"


class LinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class ClassicState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class Device:
    id: str
    display_name: str = UNNAMED_DEVICE
    signal_strength: int = 0
    link_state: LinkState = LinkState.DISCONNECTED


@dataclass(frozen=True)
class GattCharacteristic:
    characteristic_id: str
    properties: tuple[str, ...] = ()


@dataclass(frozen=True)
class GattService:
    service_id: str
    characteristics: tuple[GattCharacteristic, ...] = ()


@dataclass(frozen=True)
class ServiceDescriptor:
    service_id: str
    characteristic_id: str
    properties: frozenset[str]

    def supports(self, prop: str) -> bool:
        return prop.lower() in self.properties


@dataclass(frozen=True)
class ReadResult:
    """Raw bytes returned by a characteristic read."""

    device_id: str
    service_id: str
    characteristic_id: str
    data: bytes

    def as_uint8(self, offset: int = 0) -> int:
        """Decode one unsigned byte, e.g. a battery level."""
        if offset >= len(self.data):
            raise ValueError(f"Read returned {len(self.data)} bytes, no byte at offset {offset}")
        return self.data[offset]

    def as_text(self, charset: str = "utf-8") -> str:
        return self.data.decode(charset, errors="replace")

    def hex(self) -> str:
        return self.data.hex()


@dataclass(frozen=True)
class ScanSession:
    active: bool = False
    started_at: float | None = None
    window_seconds: int = 0


@dataclass(frozen=True)
class ScanConfig:
    window_seconds: int = 5
    allow_duplicates: bool = True
    service_filters: tuple[str, ...] = ()


@dataclass(frozen=True)
class LEConfig:
    single_link: bool = False
    connect_timeout_s: float = 10.0


@dataclass(frozen=True)
class ClassicConnectOptions:
    connector_type: str = "rfcomm"
    channel: int = 1
    delimiter: str = "\n"
    charset: str = "utf-8"
    timeout_s: float = 5.0


@dataclass(frozen=True)
class LinkConfig:
    scan: ScanConfig = field(default_factory=ScanConfig)
    le: LEConfig = field(default_factory=LEConfig)
    classic: ClassicConnectOptions = field(default_factory=ClassicConnectOptions)
