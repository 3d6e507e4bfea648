"""Clasificación pura de mensajes MQTT entrantes.

``parse_message(topic, payload, prefix)`` nunca lanza: devuelve uno de

- ``Heartbeat``     → ``<prefix>/{code}/heartbeat``
- ``DeviceCheck``   → ``<prefix>/check/device``
- ``SensorReading`` → ``<prefix>/{code}/sensor`` o ``<prefix>/sensor`` (legacy)
- ``Unhandled``     → cualquier otro topic
- ``Malformed``     → topic reconocido pero payload inválido o sin código

Los payloads aceptan varios alias de clave; gana el primero presente y no
nulo (0 es un valor válido).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator, model_validator

DEVICE_CODE_KEYS = ("deviceCode", "code")
WATER_LEVEL_KEYS = ("waterlevel_cm", "waterLevel", "waterlevel")
RAINFALL_KEYS = ("rainfall_mm", "rainfall", "rain")

_DATETIME = TypeAdapter(datetime)


class MessageKind(str, Enum):
    HEARTBEAT = "heartbeat"
    DEVICE_CHECK = "device_check"
    SENSOR = "sensor"
    UNHANDLED = "unhandled"


def first_present(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _as_code(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _as_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return _DATETIME.validate_python(value)
    except ValidationError:
        return None


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    device_code: Optional[str] = None
    timestamp: Optional[datetime] = None


class HeartbeatPayload(_Payload):
    description: Optional[str] = None
    location: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "device_code": _as_code(first_present(data, DEVICE_CODE_KEYS)),
            "description": _as_text(data.get("description")),
            "location": _as_text(data.get("location")),
            "timestamp": _as_timestamp(data.get("timestamp")),
        }


class DeviceCheckPayload(_Payload):
    description: Optional[str] = None
    location: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "device_code": _as_code(first_present(data, DEVICE_CODE_KEYS)),
            "description": _as_text(data.get("description")),
            "location": _as_text(data.get("location")),
        }


class SensorPayload(_Payload):
    water_level: Optional[float] = None
    rainfall: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "device_code": _as_code(first_present(data, DEVICE_CODE_KEYS)),
            "water_level": first_present(data, WATER_LEVEL_KEYS),
            "rainfall": first_present(data, RAINFALL_KEYS),
            "timestamp": _as_timestamp(data.get("timestamp")),
        }

    @field_validator("water_level", "rainfall", mode="before")
    @classmethod
    def _reject_bool(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("metric must be numeric")
        return v

    @field_validator("water_level", "rainfall")
    @classmethod
    def _finite(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not math.isfinite(v):
            raise ValueError("metric must be finite")
        return v

    @property
    def has_metrics(self) -> bool:
        return self.water_level is not None or self.rainfall is not None


@dataclass(frozen=True)
class Heartbeat:
    topic: str
    device_code: str
    payload: HeartbeatPayload


@dataclass(frozen=True)
class DeviceCheck:
    topic: str
    device_code: str
    payload: DeviceCheckPayload


@dataclass(frozen=True)
class SensorReading:
    topic: str
    device_code: str
    payload: SensorPayload


@dataclass(frozen=True)
class Unhandled:
    topic: str


@dataclass(frozen=True)
class Malformed:
    topic: str
    kind: MessageKind
    error: str
    raw: str = ""


Message = Union[Heartbeat, DeviceCheck, SensorReading, Unhandled, Malformed]


def classify_topic(topic: str, prefix: str) -> tuple[MessageKind, Optional[str]]:
    """Tipo de mensaje y código de dispositivo embebido en el topic (si hay)."""
    if topic == f"{prefix}/check/device":
        return MessageKind.DEVICE_CHECK, None

    parts = topic.split("/")
    if not parts or parts[0] != prefix:
        return MessageKind.UNHANDLED, None
    if len(parts) == 2 and parts[1] == "sensor":
        return MessageKind.SENSOR, None
    if len(parts) == 3 and parts[2] == "heartbeat":
        return MessageKind.HEARTBEAT, parts[1]
    if len(parts) == 3 and parts[2] == "sensor":
        return MessageKind.SENSOR, parts[1]
    return MessageKind.UNHANDLED, None


def decode_payload(payload: bytes | str, allow_empty: bool = False) -> dict[str, Any]:
    """JSON → dict. ValueError si no es JSON o no es un objeto."""
    raw = payload.encode() if isinstance(payload, str) else bytes(payload)
    if not raw.strip():
        if allow_empty:
            return {}
        raise ValueError("empty payload")
    data = orjson.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"payload must be a JSON object, got {type(data).__name__}")
    return data


def _preview(payload: bytes | str, limit: int = 200) -> str:
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, (bytes, bytearray)) else str(payload)
    return text[:limit]


def parse_message(topic: str, payload: bytes | str, prefix: str) -> Message:
    kind, topic_code = classify_topic(topic, prefix)
    if kind is MessageKind.UNHANDLED:
        return Unhandled(topic)

    try:
        data = decode_payload(payload, allow_empty=kind is MessageKind.HEARTBEAT)
        if kind is MessageKind.HEARTBEAT:
            body = HeartbeatPayload.model_validate(data)
            code = _as_code(topic_code) or body.device_code
            if not code:
                return Malformed(topic, kind, "heartbeat missing device code", _preview(payload))
            return Heartbeat(topic, code, body)

        if kind is MessageKind.DEVICE_CHECK:
            body = DeviceCheckPayload.model_validate(data)
            if not body.device_code:
                return Malformed(topic, kind, "Device code not provided", _preview(payload))
            return DeviceCheck(topic, body.device_code, body)

        body = SensorPayload.model_validate(data)
        code = _as_code(topic_code) or body.device_code
        if not code:
            return Malformed(topic, kind, "Sensor data missing device code", _preview(payload))
        return SensorReading(topic, code, body)

    except (orjson.JSONDecodeError, ValueError) as e:
        # pydantic.ValidationError es subclase de ValueError
        return Malformed(topic, kind, str(e), _preview(payload))
