"""Servicios de negocio independientes del transporte."""

from .device_directory import DeviceDirectory, DeviceStatusChange, RegistrationResult
from .location_status import LocationStatusService
from .locks import KeyedLock
from .reading_cache import LatestReading, LatestReadingCache
from .sensor_log_store import SensorLogStore

__all__ = [
    "DeviceDirectory",
    "DeviceStatusChange",
    "RegistrationResult",
    "LocationStatusService",
    "KeyedLock",
    "LatestReading",
    "LatestReadingCache",
    "SensorLogStore",
]
