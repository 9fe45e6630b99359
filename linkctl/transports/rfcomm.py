"""Classic adapter implementation using RFCOMM sockets and bluetoothctl."""

from __future__ import annotations

import asyncio
import codecs
import logging
import re
import socket
import subprocess
from collections.abc import Callable, Sequence

from linkctl.core.errors import AdapterUnavailable, ConnectFailed
from linkctl.core.events import DataReceived, DeviceDisconnected, EventHub, Subscription
from linkctl.core.model import UNNAMED_DEVICE, ClassicConnectOptions, Device

LOGGER = logging.getLogger(__name__)

_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F:]{17})\s+(.+)$", re.IGNORECASE)
_BONDED_COMMANDS = (
    ("bluetoothctl", "devices", "Paired"),
    ("bluetoothctl", "paired-devices"),
)
_RECV_SIZE = 1024


class RFCOMMConnection:
    """One open RFCOMM stream; inbound data is split on the configured delimiter."""

    def __init__(
        self,
        device: Device,
        bt_socket: socket.socket,
        options: ClassicConnectOptions,
        adapter_events: EventHub,
    ) -> None:
        self.device = device
        self._socket = bt_socket
        self._options = options
        self._adapter_events = adapter_events
        self._data_events = EventHub()
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    def start(self) -> None:
        self._reader = asyncio.create_task(self._read_loop())

    async def is_connected(self) -> bool:
        return not self._closed

    async def write(self, payload: bytes) -> bool:
        if self._closed:
            return False
        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendall(self._socket, payload)
        except OSError as exc:
            LOGGER.warning("RFCOMM send to %s failed: %s", self.device.id, exc)
            return False
        return True

    async def disconnect(self) -> bool:
        if self._closed:
            return False
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        return self._close()

    def on_data_received(self, handler: Callable[[DataReceived], None]) -> Subscription:
        return self._data_events.subscribe(DataReceived, handler)

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        delimiter = self._options.delimiter
        buffer = ""
        try:
            decoder = codecs.getincrementaldecoder(self._options.charset)(errors="replace")
            while not self._closed:
                chunk = await loop.sock_recv(self._socket, _RECV_SIZE)
                if not chunk:
                    break
                buffer += decoder.decode(chunk)
                *messages, buffer = buffer.split(delimiter)
                for message in messages:
                    self._data_events.emit(DataReceived(device_id=self.device.id, data=message))
        except LookupError as exc:
            LOGGER.error("Cannot decode RFCOMM data from %s: %s", self.device.id, exc)
        except OSError as exc:
            if not self._closed:
                LOGGER.warning("RFCOMM receive from %s failed: %s", self.device.id, exc)
        finally:
            if not self._closed:
                self._close()
                self._adapter_events.emit(DeviceDisconnected(self.device.id))

    def _close(self) -> bool:
        self._closed = True
        try:
            self._socket.close()
        except OSError as exc:
            LOGGER.debug("Closing RFCOMM socket for %s failed: %s", self.device.id, exc)
            return False
        return True


class RFCOMMAdapter:
    def __init__(self) -> None:
        self.events = EventHub()
        self._connection: RFCOMMConnection | None = None
        self._names: dict[str, str] = {}

    async def list_bonded_devices(self) -> list[Device]:
        devices = await asyncio.to_thread(_list_bonded_devices)
        self._names.update((device.id, device.display_name) for device in devices)
        return devices

    async def connect_to_device(self, device_id: str, options: ClassicConnectOptions) -> RFCOMMConnection:
        if options.connector_type != "rfcomm":
            raise AdapterUnavailable(f"Unsupported connector type '{options.connector_type}'")
        try:
            af_bluetooth = socket.AF_BLUETOOTH
            btproto_rfcomm = socket.BTPROTO_RFCOMM
        except AttributeError as exc:
            raise AdapterUnavailable(
                "This Python build does not expose Bluetooth socket APIs (AF_BLUETOOTH/BTPROTO_RFCOMM)."
            ) from exc

        try:
            bt_socket = socket.socket(af_bluetooth, socket.SOCK_STREAM, btproto_rfcomm)
        except OSError as exc:
            raise AdapterUnavailable(f"Could not create RFCOMM socket: {exc}") from exc
        bt_socket.setblocking(False)

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.sock_connect(bt_socket, (device_id, options.channel)),
                timeout=options.timeout_s,
            )
        except TimeoutError as exc:
            bt_socket.close()
            raise ConnectFailed(
                device_id, f"RFCOMM connect timed out on channel {options.channel}"
            ) from exc
        except OSError as exc:
            bt_socket.close()
            raise ConnectFailed(
                device_id, f"RFCOMM connect failed on channel {options.channel}: {exc}"
            ) from exc

        device = Device(id=device_id, display_name=self._names.get(device_id, UNNAMED_DEVICE))
        connection = RFCOMMConnection(device, bt_socket, options, self.events)
        connection.start()
        self._connection = connection
        return connection

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.disconnect()


def _list_bonded_devices() -> list[Device]:
    seen: set[str] = set()
    devices: list[Device] = []
    command_errors: list[str] = []
    ran_any = False

    for cmd in _BONDED_COMMANDS:
        result = _run_bluetoothctl(cmd)
        if result is None:
            continue
        ran_any = True
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if stderr:
                command_errors.append(f"{' '.join(cmd)} -> {stderr}")
            continue

        for line in result.stdout.splitlines():
            match = _DEVICE_LINE_RE.match(line.strip())
            if not match:
                continue
            mac, name = match.group(1).upper(), match.group(2).strip()
            if mac in seen:
                continue
            seen.add(mac)
            devices.append(Device(id=mac, display_name=name or UNNAMED_DEVICE))

    if devices:
        return devices
    if not ran_any:
        raise AdapterUnavailable("bluetoothctl not found. Install BlueZ to list bonded devices.")
    if command_errors:
        joined = " | ".join(command_errors)
        raise AdapterUnavailable(
            f"Listing bonded devices failed. Ensure a working D-Bus/BlueZ session. Details: {joined}"
        )
    return devices


def _run_bluetoothctl(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None
