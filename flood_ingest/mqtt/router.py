"""Router de mensajes MQTT.

Clasifica (topic, payload) en un mensaje tipado y lo despacha por tabla.
``route`` nunca lanza: cualquier fallo de un handler se loguea, se cuenta y
se convierte en una notificación de error; el siguiente mensaje se procesa
con normalidad.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..domain.models import isoformat, utc_now
from ..monitoring.metrics import MQTT_MESSAGES, MQTT_PROCESSING_LATENCY
from ..monitoring.stats import Stats
from ..notifications.emitter import NotificationEmitter
from .handlers import DeviceCheckHandler, HeartbeatHandler, SensorDataHandler
from .messages import (
    DeviceCheck,
    Heartbeat,
    Malformed,
    Message,
    MessageKind,
    SensorReading,
    Unhandled,
    parse_message,
)

logger = logging.getLogger(__name__)

# Evento de error que publica cada tipo cuando el payload es inválido
_MALFORMED_EVENT = {
    MessageKind.HEARTBEAT: "device_heartbeat_error",
    MessageKind.DEVICE_CHECK: "device-check-error",
    MessageKind.SENSOR: "sensor-data-error",
}

_KIND_OF = {
    Heartbeat: MessageKind.HEARTBEAT,
    DeviceCheck: MessageKind.DEVICE_CHECK,
    SensorReading: MessageKind.SENSOR,
}


@dataclass
class RouteResult:
    kind: str
    ok: bool
    result: Any = None
    error: Optional[str] = None


class MessageRouter:
    def __init__(
        self,
        prefix: str,
        emitter: NotificationEmitter,
        heartbeat: HeartbeatHandler,
        device_check: DeviceCheckHandler,
        sensor: SensorDataHandler,
    ):
        self._prefix = prefix.strip("/")
        self._emitter = emitter
        self._stats = Stats()
        self._handlers = {"heartbeat": heartbeat, "device_check": device_check, "sensor": sensor}
        self._dispatch: dict[type, Callable[[Any], Any]] = {
            Heartbeat: heartbeat.handle,
            DeviceCheck: device_check.handle,
            SensorReading: sensor.handle,
        }

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def stats(self) -> Stats:
        return self._stats

    def topics(self) -> dict[str, str]:
        p = self._prefix
        return {
            "heartbeat": f"{p}/+/heartbeat",
            "sensor": f"{p}/+/sensor",
            "sensor_legacy": f"{p}/sensor",
            "device_check": f"{p}/check/device",
        }

    def subscriptions(self) -> list[str]:
        return list(self.topics().values())

    def route(self, topic: str, payload: bytes | str) -> RouteResult:
        started = time.perf_counter()
        try:
            message = parse_message(topic, payload, self._prefix)
            return self._dispatch_message(message)
        except Exception as e:
            # Solo llega aquí un bug fuera de los handlers
            logger.exception("[ROUTER] Unexpected error topic=%s: %s", topic, e)
            self._stats.record_failed()
            self._emitter.emit_error_notification("mqtt-router", e, {"topic": topic})
            return RouteResult(kind="unknown", ok=False, error=str(e))
        finally:
            MQTT_PROCESSING_LATENCY.observe(time.perf_counter() - started)

    def _dispatch_message(self, message: Message) -> RouteResult:
        if isinstance(message, Unhandled):
            return self._unhandled(message)
        if isinstance(message, Malformed):
            return self._malformed(message)

        kind = _KIND_OF[type(message)].value
        self._stats.record_received(kind)
        handler = self._dispatch[type(message)]
        try:
            result = handler(message)
        except Exception as e:
            logger.exception("[ROUTER] %s handler failed topic=%s device=%s: %s", kind, message.topic, message.device_code, e)
            self._stats.record_failed()
            MQTT_MESSAGES.labels(kind=kind, status="error").inc()
            self._emitter.emit_error_notification(
                f"mqtt-{kind}",
                e,
                {"topic": message.topic, "deviceCode": message.device_code},
            )
            return RouteResult(kind=kind, ok=False, error=str(e))

        self._stats.record_processed()
        MQTT_MESSAGES.labels(kind=kind, status="ok").inc()
        if self._stats.processed % 100 == 0:
            logger.info("[ROUTER] %s", self._stats)
        return RouteResult(kind=kind, ok=True, result=result)

    def _unhandled(self, message: Unhandled) -> RouteResult:
        self._stats.record_received(MessageKind.UNHANDLED.value)
        self._stats.record_unhandled()
        MQTT_MESSAGES.labels(kind=MessageKind.UNHANDLED.value, status="unhandled").inc()
        logger.info("[ROUTER] Unhandled topic: %s", message.topic)
        return RouteResult(kind=MessageKind.UNHANDLED.value, ok=True)

    def _malformed(self, message: Malformed) -> RouteResult:
        kind = message.kind.value
        self._stats.record_received(kind)
        self._stats.record_failed()
        MQTT_MESSAGES.labels(kind=kind, status="malformed").inc()
        logger.error("[ROUTER] Malformed %s message topic=%s: %s", kind, message.topic, message.error)

        self._emitter.emit_to_all(
            _MALFORMED_EVENT[message.kind],
            {"topic": message.topic, "message": message.raw, "error": message.error, "timestamp": isoformat(utc_now())},
        )
        self._emitter.emit_error_notification(f"mqtt-{kind}", message.error, {"topic": message.topic})
        return RouteResult(kind=kind, ok=False, error=message.error)

    def get_routing_stats(self) -> dict[str, Any]:
        return {
            "supportedTopics": self.topics(),
            "handlers": {name: type(handler).__name__ for name, handler in self._handlers.items()},
            "stats": self._stats.to_dict(),
        }
