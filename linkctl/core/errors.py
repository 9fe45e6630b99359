"""Domain-specific errors for linkctl."""

from __future__ import annotations


class LinkctlError(Exception):
    """Base error for linkctl."""


class ConfigValidationError(LinkctlError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(LinkctlError):
    """Raised when reading config sources fails."""


class AdapterUnavailable(LinkctlError):
    """Raised when the radio is off, missing, or unsupported on this host."""


class DeviceSelectionError(LinkctlError):
    """Raised when a device hint cannot resolve a single target."""


class DeviceLinkError(LinkctlError):
    """Base error for failures scoped to one device.

    Carries the device id and a human-readable cause so every surfaced error
    can be reported without looking at the traceback.
    """

    def __init__(self, device_id: str | None, cause: object) -> None:
        self.device_id = device_id
        self.cause = str(cause) or type(cause).__name__
        if device_id:
            super().__init__(f"{device_id}: {self.cause}")
        else:
            super().__init__(self.cause)


class AlreadyConnecting(DeviceLinkError):
    """Raised when connect is called on a device that is not disconnected."""


class NotConnected(DeviceLinkError):
    """Raised when an operation needs a connected link and there is none."""


class ConnectFailed(DeviceLinkError):
    """Raised when the adapter could not establish a link."""


class DisconnectFailed(DeviceLinkError):
    """Raised when the adapter reports a failed disconnect. Local state is reset anyway."""


class DiscoveryFailed(DeviceLinkError):
    """Raised when service enumeration fails."""


class ReadFailed(DeviceLinkError):
    """Raised when a characteristic read failed after its single retry."""


class WriteRejected(DeviceLinkError):
    """Raised when a Classic write errors or is not acknowledged."""


class UnknownCharacteristic(DeviceLinkError):
    """Raised when a read references a characteristic missing from the current snapshot."""


class NoBondedDevices(DeviceLinkError):
    """Raised when the host has no bonded Classic devices."""
