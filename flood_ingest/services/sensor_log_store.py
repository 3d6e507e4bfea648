"""Store append-only de lecturas de sensores.

Operación de negocio independiente del transporte: la usan tanto el
handler MQTT como cualquier endpoint HTTP.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine

from ..domain.models import SensorLog, SensorStatistics, to_naive_utc, utc_now
from ..errors import InvalidArgumentError, NoDataError
from ..persistence.errors import translate_db_errors
from ..persistence.sensor_log_repository import SensorLogRepository
from .device_directory import validate_device_code

logger = logging.getLogger(__name__)


def _metric(name: str, value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidArgumentError(f"{name} must be a finite number, got {value!r}")
    return float(value)


class SensorLogStore:
    def __init__(self, engine: Engine, repository: Optional[SensorLogRepository] = None):
        self._engine = engine
        self._repo = repository or SensorLogRepository()

    def append(
        self,
        device_code: str,
        rainfall: Optional[float] = None,
        water_level: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> SensorLog:
        """Guarda una lectura y la devuelve con su id.

        Raises:
            NoDataError: si no hay lluvia ni nivel de agua
            ReferentialIntegrityError: si el dispositivo no existe
        """
        device_code = validate_device_code(device_code)
        rainfall = _metric("rainfall", rainfall)
        water_level = _metric("waterLevel", water_level)
        if rainfall is None and water_level is None:
            raise NoDataError(f"Reading from {device_code} has neither rainfall nor water level")

        ts = to_naive_utc(timestamp) if timestamp is not None else utc_now()
        with translate_db_errors("append sensor log"):
            with self._engine.begin() as conn:
                log = self._repo.insert(conn, device_code, rainfall, water_level, ts)

        logger.debug(
            "[SENSOR_LOG] Saved id=%s device=%s water_level=%s rainfall=%s",
            log.id,
            device_code,
            water_level,
            rainfall,
        )
        return log

    def latest(self, device_code: str) -> Optional[SensorLog]:
        device_code = validate_device_code(device_code)
        with translate_db_errors("latest sensor log"):
            with self._engine.connect() as conn:
                return self._repo.latest(conn, device_code)

    def range(self, device_code: str, start: datetime, end: datetime) -> list[SensorLog]:
        device_code = validate_device_code(device_code)
        start, end = self._window(start, end)
        with translate_db_errors("sensor log range"):
            with self._engine.connect() as conn:
                return self._repo.range(conn, device_code, start, end)

    def statistics(self, device_code: str, start: datetime, end: datetime) -> SensorStatistics:
        device_code = validate_device_code(device_code)
        start, end = self._window(start, end)
        with translate_db_errors("sensor log statistics"):
            with self._engine.connect() as conn:
                return self._repo.statistics(conn, device_code, start, end)

    @staticmethod
    def _window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start > end:
            raise InvalidArgumentError(f"Range start {start.isoformat()} is after end {end.isoformat()}")
        return start, end
