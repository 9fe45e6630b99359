"""Resolve user-supplied device hints against a device list."""

from __future__ import annotations

from collections.abc import Sequence

from linkctl.core.errors import DeviceSelectionError
from linkctl.core.model import Device


def match_score(device: Device, hint: str) -> int:
    normalized = hint.strip().lower()
    if not normalized:
        return 0
    device_id = device.id.lower()
    if device_id == normalized:
        return 3
    if device_id.startswith(normalized):
        return 2
    if normalized in device.display_name.lower():
        return 1
    return 0


def resolve_device(devices: Sequence[Device], hint: str) -> Device:
    best: list[Device] = []
    best_score = 0
    for device in devices:
        score = match_score(device, hint)
        if score > best_score:
            best = [device]
            best_score = score
        elif score and score == best_score:
            best.append(device)

    if not best:
        raise DeviceSelectionError(f"No device found matching '{hint}'")
    if len(best) > 1:
        candidates = ", ".join(f"{d.id} ({d.display_name})" for d in best)
        raise DeviceSelectionError(
            f"Multiple candidate devices found: {candidates}. Use the full address to choose one."
        )
    return best[0]
