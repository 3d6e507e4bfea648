"""Notificaciones tipadas y su emisor."""

from .device_events import announce_status_change, emit_device_status
from .emitter import GLOBAL_NOTIFICATION_EVENT, NotificationEmitter
from .factory import SEVERITIES, create_notification

__all__ = [
    "GLOBAL_NOTIFICATION_EVENT",
    "NotificationEmitter",
    "SEVERITIES",
    "announce_status_change",
    "create_notification",
    "emit_device_status",
]
