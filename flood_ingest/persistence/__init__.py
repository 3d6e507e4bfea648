"""Persistence layer - Esquema y repositorios SQLAlchemy Core."""

from .device_repository import DeviceRepository
from .errors import translate_db_errors
from .location_repository import HISTORY_SORT_FIELDS, LocationRepository
from .schema import ensure_schema, metadata
from .sensor_log_repository import SensorLogRepository

__all__ = [
    "DeviceRepository",
    "LocationRepository",
    "SensorLogRepository",
    "HISTORY_SORT_FIELDS",
    "ensure_schema",
    "metadata",
    "translate_db_errors",
]
