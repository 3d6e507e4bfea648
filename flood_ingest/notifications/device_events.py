"""Eventos de conectividad de dispositivos (heartbeat, timeout, manual)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..domain.models import Device, DeviceStatus, isoformat
from .emitter import NotificationEmitter
from .factory import create_notification, now_iso

logger = logging.getLogger(__name__)


def device_status_payload(device: Device, reason: str) -> dict[str, Any]:
    return {
        "deviceCode": device.code,
        "status": device.status.value,
        "lastSeen": isoformat(device.last_seen),
        "timestamp": now_iso(),
        "reason": reason,
    }


def emit_device_status(emitter: NotificationEmitter, device: Device, reason: str) -> None:
    """``device_status_changed`` global + ``device_status_{code}``."""
    data = device_status_payload(device, reason)
    emitter.emit_to_all("device_status_changed", data)
    emitter.emit_to_all(f"device_status_{device.code}", data)
    emitter.emit_to_device(device.code, "device_status_changed", data)


def device_status_notification(
    device: Device,
    previous_status: Optional[DeviceStatus],
    reason: str = "heartbeat",
) -> dict[str, Any]:
    connected = device.status == DeviceStatus.CONNECTED
    return create_notification(
        "device_status_change",
        title=f"Device {device.code} {'Connected' if connected else 'Disconnected'}",
        deviceCode=device.code,
        previousStatus=previous_status.value if previous_status else None,
        newStatus=device.status.value,
        severity="low" if connected else "medium",
        location=device.location_name or "Unknown Location",
        timeframe="status berubah",
        reason=reason,
        data=device.to_dict(),
    )


def announce_status_change(
    emitter: NotificationEmitter,
    device: Device,
    previous_status: Optional[DeviceStatus],
    reason: str,
    summary: Optional[dict[str, int]] = None,
) -> bool:
    """Notificación de cambio + resumen agregado (si se proporciona)."""
    emitted = emitter.emit(device_status_notification(device, previous_status, reason))
    if summary is not None:
        emitter.emit_to_all("device_status_summary", summary)
    logger.info(
        "[DEVICES] %s: %s -> %s (%s)",
        device.code,
        previous_status.value if previous_status else None,
        device.status.value,
        reason,
    )
    return emitted
