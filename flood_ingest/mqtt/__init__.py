"""MQTT transport - cliente, parseo, router, handlers y receptor."""

from .messages import (
    DeviceCheck,
    Heartbeat,
    Malformed,
    MessageKind,
    SensorReading,
    Unhandled,
    parse_message,
)
from .router import MessageRouter, RouteResult

__all__ = [
    "DeviceCheck",
    "Heartbeat",
    "Malformed",
    "MessageKind",
    "SensorReading",
    "Unhandled",
    "parse_message",
    "MessageRouter",
    "RouteResult",
]
