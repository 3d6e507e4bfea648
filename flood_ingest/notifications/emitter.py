"""Emisor de notificaciones en tiempo real.

Sink tipado de pub/sub con estadísticas, sin lógica de negocio:

- ``emit(notification)`` valida y publica en ``new-notification`` (global),
  ``notification-device-{code}`` y ``notification-location-{id}``
- ``emit_to_all / emit_to_room / emit_to_device / emit_to_location`` para
  eventos crudos del dashboard
- contadores totalEmitted / byType / bySeverity / errors
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol

from ..monitoring.metrics import NOTIFICATIONS_EMITTED, NOTIFICATIONS_REJECTED
from ..realtime.broadcaster import Broadcaster
from .factory import SEVERITIES, create_notification, now_iso, severity_for_level

logger = logging.getLogger(__name__)

GLOBAL_NOTIFICATION_EVENT = "new-notification"


class Presence(Protocol):
    """Información de clientes conectados (la implementa WebSocketHub)."""

    @property
    def client_count(self) -> int:
        ...

    def active_rooms(self) -> list[str]:
        ...

    def clients_in_room(self, room: str) -> int:
        ...


def _empty_stats() -> dict[str, Any]:
    return {"totalEmitted": 0, "byType": {}, "bySeverity": {}, "errors": 0}


class NotificationEmitter:
    def __init__(self, broadcaster: Broadcaster, presence: Optional[Presence] = None):
        self._broadcaster = broadcaster
        self._presence = presence
        self._lock = threading.Lock()
        self._stats = _empty_stats()

    def emit(self, notification: Any) -> bool:
        """Publica una notificación validada. False si se rechaza o falla."""
        error = self._validate(notification)
        if error:
            logger.error("[NOTIFY] Rejected notification: %s", error)
            self._count_error()
            return False

        try:
            self._broadcaster.publish(GLOBAL_NOTIFICATION_EVENT, notification)
            device_code = notification.get("deviceCode")
            if device_code:
                self._broadcaster.publish(f"notification-device-{device_code}", notification)
            location_id = notification.get("locationId")
            if location_id is not None and location_id != "":
                self._broadcaster.publish(f"notification-location-{location_id}", notification)
        except Exception as e:
            logger.exception("[NOTIFY] Error emitting notification type=%s: %s", notification.get("type"), e)
            self._count_error()
            return False

        with self._lock:
            self._stats["totalEmitted"] += 1
            by_type = self._stats["byType"]
            by_type[notification["type"]] = by_type.get(notification["type"], 0) + 1
            by_severity = self._stats["bySeverity"]
            by_severity[notification["severity"]] = by_severity.get(notification["severity"], 0) + 1
        NOTIFICATIONS_EMITTED.labels(type=notification["type"], severity=notification["severity"]).inc()

        logger.info(
            "[NOTIFY] Emitted type=%s title=%r device=%s location=%s severity=%s",
            notification["type"],
            notification["title"],
            notification.get("deviceCode"),
            notification.get("locationId"),
            notification["severity"],
        )
        return True

    def emit_to_all(self, event: str, data: Any) -> bool:
        """Evento crudo a todos los clientes."""
        try:
            self._broadcaster.publish(event, data)
            logger.debug("[NOTIFY] Event '%s' emitted to all clients", event)
            return True
        except Exception as e:
            logger.error("[NOTIFY] Error emitting '%s' to all clients: %s", event, e)
            return False

    def emit_to_room(self, room: str, event: str, data: Any) -> bool:
        """Evento crudo a los clientes de una room."""
        try:
            self._broadcaster.publish(event, data, room=room)
            logger.debug("[NOTIFY] Event '%s' emitted to room '%s'", event, room)
            return True
        except Exception as e:
            logger.error("[NOTIFY] Error emitting '%s' to room '%s': %s", event, room, e)
            return False

    def emit_to_device(self, device_code: str, event: str, data: Any) -> bool:
        """Evento a todas las rooms del dispositivo."""
        rooms = (f"device-{device_code}", f"device-status-{device_code}", f"notification-device-{device_code}")
        return all([self.emit_to_room(room, event, data) for room in rooms])

    def emit_to_location(self, location_id: Any, event: str, data: Any) -> bool:
        """Evento a las rooms de la ubicación."""
        rooms = (
            f"location-{location_id}",
            f"location-status-{location_id}",
            f"location-history-{location_id}",
            f"notification-location-{location_id}",
        )
        return all([self.emit_to_room(room, event, data) for room in rooms])

    def emit_system_notification(self, level: str, message: str, **extra: Any) -> bool:
        """Notificación de sistema con nivel info, warning o error."""
        return self.emit(
            create_notification(
                "system_alert",
                title=f"System {(level or '').capitalize()}",
                message=message,
                severity=severity_for_level(level),
                **extra,
            )
        )

    def emit_error_notification(self, source: str, error: Any, context: Optional[dict] = None) -> bool:
        """Notificación de error con la fuente y el contexto del fallo."""
        return self.emit(
            create_notification(
                "error",
                title=f"Error in {source}",
                message=str(error),
                severity="high",
                context=context or {},
            )
        )

    def get_stats(self) -> dict[str, Any]:
        """Contadores de notificaciones emitidas."""
        with self._lock:
            stats = {
                "totalEmitted": self._stats["totalEmitted"],
                "byType": dict(self._stats["byType"]),
                "bySeverity": dict(self._stats["bySeverity"]),
                "errors": self._stats["errors"],
            }
        stats["connectedClients"] = self._presence.client_count if self._presence else 0
        stats["timestamp"] = now_iso()
        return stats

    def reset_stats(self) -> None:
        """Pone los contadores a cero."""
        with self._lock:
            self._stats = _empty_stats()
        logger.info("[NOTIFY] Notification statistics reset")

    def get_active_rooms(self) -> list[str]:
        """Rooms activas según el hub (vacío sin presencia)."""
        return self._presence.active_rooms() if self._presence else []

    def get_clients_in_room(self, room: str) -> int:
        """Clientes en la room (0 sin presencia)."""
        return self._presence.clients_in_room(room) if self._presence else 0

    def get_health_status(self) -> dict[str, Any]:
        """Resumen de salud del emisor."""
        stats = self.get_stats()
        return {
            "status": "healthy",
            "connectedClients": stats["connectedClients"],
            "totalNotifications": stats["totalEmitted"],
            "errors": stats["errors"],
            "activeRooms": len(self.get_active_rooms()),
            "timestamp": stats["timestamp"],
        }

    def _count_error(self) -> None:
        with self._lock:
            self._stats["errors"] += 1
        NOTIFICATIONS_REJECTED.inc()

    @staticmethod
    def _validate(notification: Any) -> Optional[str]:
        if not isinstance(notification, dict):
            return "notification must be an object"
        if not notification.get("type"):
            return "missing required field: type"
        if not notification.get("title"):
            return "missing required field: title"
        severity = notification.get("severity")
        if severity not in SEVERITIES:
            return f"invalid severity: {severity!r}"
        return None
