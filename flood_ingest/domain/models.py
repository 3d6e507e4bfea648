"""Modelos de dominio: dispositivos, ubicaciones, lecturas e historial."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

# Timestamps de dispositivo más adelantados que esto se reemplazan por la hora de llegada
MAX_FUTURE_SKEW = timedelta(minutes=5)


def utc_now() -> datetime:
    """Hora actual en UTC naive (formato en que se persiste)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def bounded_timestamp(value: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Timestamp reportado por el dispositivo, o la hora de llegada si falta o viene del futuro."""
    now = now or utc_now()
    if value is None:
        return now
    value = to_naive_utc(value)
    if value > now + MAX_FUTURE_SKEW:
        return now
    return value


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class FloodStatus(str, Enum):
    """Estado de riesgo de inundación de una ubicación."""

    AMAN = "AMAN"
    WASPADA = "WASPADA"
    SIAGA = "SIAGA"
    BAHAYA = "BAHAYA"


class DeviceStatus(str, Enum):
    """Estado de conectividad del dispositivo."""

    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


@dataclass(frozen=True)
class ThresholdBands:
    """Bandas de nivel de agua (cm) de una ubicación."""

    aman_max: float
    waspada_min: float
    waspada_max: float
    siaga_min: float
    siaga_max: float
    bahaya_min: float

    def to_dict(self) -> dict:
        return {
            "amanMax": self.aman_max,
            "waspadaMin": self.waspada_min,
            "waspadaMax": self.waspada_max,
            "siagaMin": self.siaga_min,
            "siagaMax": self.siaga_max,
            "bahayaMin": self.bahaya_min,
        }


@dataclass
class Location:
    id: int
    name: str
    bands: ThresholdBands
    address: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    current_status: FloodStatus = FloodStatus.AMAN
    current_water_level: Optional[float] = None
    current_rainfall: Optional[float] = None
    last_update: Optional[datetime] = None
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "district": self.district,
            "city": self.city,
            "province": self.province,
            "currentStatus": self.current_status.value,
            "currentWaterLevel": self.current_water_level,
            "currentRainfall": self.current_rainfall,
            "lastUpdate": isoformat(self.last_update),
            "isActive": self.is_active,
            **self.bands.to_dict(),
        }


@dataclass
class Device:
    id: int
    code: str
    location_id: int
    description: Optional[str] = None
    status: DeviceStatus = DeviceStatus.DISCONNECTED
    last_seen: Optional[datetime] = None
    location_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "locationId": self.location_id,
            "locationName": self.location_name,
            "status": self.status.value,
            "lastSeen": isoformat(self.last_seen),
        }


@dataclass(frozen=True)
class SensorLog:
    """Lectura cruda inmutable."""

    id: int
    device_code: str
    rainfall: Optional[float]
    water_level: Optional[float]
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deviceCode": self.device_code,
            "rainfall": self.rainfall,
            "waterLevel": self.water_level,
            "timestamp": isoformat(self.timestamp),
        }


@dataclass(frozen=True)
class LocationStatusHistory:
    """Transición de estado de una ubicación (solo se crea en cambio)."""

    id: int
    location_id: Optional[int]
    previous_status: FloodStatus
    new_status: FloodStatus
    water_level: Optional[float]
    rainfall: Optional[float]
    duration: int
    changed_at: datetime
    location_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "locationId": self.location_id,
            "locationName": self.location_name,
            "previousStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
            "waterLevel": self.water_level,
            "rainfall": self.rainfall,
            "duration": self.duration,
            "changedAt": isoformat(self.changed_at),
        }


@dataclass
class StatusProcessingResult:
    """Resultado de procesar una lectura contra la ubicación del dispositivo."""

    location: Location
    previous_status: FloodStatus
    new_status: FloodStatus
    changed: bool
    history: Optional[LocationStatusHistory] = None
    duration: int = 0

    def to_dict(self) -> dict:
        return {
            "location": self.location.to_dict(),
            "previousStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
            "changed": self.changed,
            "history": self.history.to_dict() if self.history else None,
            "duration": self.duration,
        }


@dataclass
class SensorStatistics:
    """avg/min/max/count por métrica en un rango."""

    device_code: str
    count: int
    rainfall: dict[str, Optional[float]] = field(default_factory=dict)
    water_level: dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceCode": self.device_code,
            "count": self.count,
            "rainfall": self.rainfall,
            "waterLevel": self.water_level,
        }
