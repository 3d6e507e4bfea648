"""Motor de estado de ubicaciones.

Por cada lectura con nivel de agua: clasifica, actualiza el snapshot de la
ubicación y, solo si el estado cambió, escribe una fila de historial con la
duración (minutos) en el estado anterior. Snapshot + historial van en una
única transacción bajo el lock de la ubicación.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.engine import Engine

from ..domain.classifier import classify, threshold_info
from ..domain.models import (
    FloodStatus,
    Location,
    LocationStatusHistory,
    StatusProcessingResult,
    ThresholdBands,
    to_naive_utc,
    utc_now,
)
from ..errors import InvalidArgumentError, NotFoundError
from ..persistence.errors import translate_db_errors
from ..persistence.location_repository import HISTORY_SORT_FIELDS, LocationRepository
from .device_directory import validate_device_code
from .locks import KeyedLock

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    FloodStatus.AMAN: "green",
    FloodStatus.WASPADA: "yellow",
    FloodStatus.SIAGA: "orange",
    FloodStatus.BAHAYA: "red",
}

DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 100


def minutes_between(earlier: Optional[datetime], later: datetime) -> int:
    """Minutos completos entre dos instantes; 0 si no hay instante previo."""
    if earlier is None:
        return 0
    return max(0, math.floor((later - earlier).total_seconds() / 60))


def time_since(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    if value is None:
        return "No data"
    minutes = minutes_between(value, now or utc_now())
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} min ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days > 1 else ''} ago"


def status_color(status: Optional[FloodStatus | str]) -> str:
    try:
        return STATUS_COLORS[FloodStatus(status)]
    except (ValueError, KeyError):
        return "gray"


def progress_percentage(level: Optional[float], bahaya_min: Optional[float]) -> float:
    if not level or not bahaya_min:
        return 0
    return min(level / bahaya_min * 100, 100)


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def validate_history_params(
    page: Any = 1,
    limit: Any = DEFAULT_HISTORY_LIMIT,
    status: Any = None,
    sort_by: Any = "changedAt",
    sort_order: Any = "desc",
) -> dict[str, Any]:
    """Normaliza parámetros de paginación: valores inválidos caen al default."""
    valid_status: Optional[FloodStatus] = None
    if status:
        try:
            valid_status = FloodStatus(str(status).upper())
        except ValueError:
            valid_status = None

    order = str(sort_order).lower() if sort_order else "desc"
    return {
        "page": max(1, _to_int(page, 1)),
        "limit": min(MAX_HISTORY_LIMIT, max(1, _to_int(limit, DEFAULT_HISTORY_LIMIT))),
        "status": valid_status,
        "sort_by": sort_by if sort_by in HISTORY_SORT_FIELDS else "changedAt",
        "sort_order": order if order in ("asc", "desc") else "desc",
    }


class LocationStatusService:
    """Clasificación y transiciones de estado por ubicación."""

    def __init__(
        self,
        engine: Engine,
        locks: Optional[KeyedLock] = None,
        repository: Optional[LocationRepository] = None,
    ):
        self._engine = engine
        self._locks = locks or KeyedLock("location")
        self._repo = repository or LocationRepository()

    def process_sensor_data(
        self,
        device_code: str,
        water_level: float,
        rainfall: Optional[float] = None,
        at: Optional[datetime] = None,
    ) -> StatusProcessingResult:
        """Procesa una lectura de nivel de agua para la ubicación del dispositivo.

        Raises:
            InvalidArgumentError: nivel no numérico/finito o código vacío
            NotFoundError: el dispositivo no existe o no tiene ubicación
        """
        device_code = validate_device_code(device_code)
        now = to_naive_utc(at) if at is not None else utc_now()

        with translate_db_errors("process sensor data"):
            with self._engine.connect() as conn:
                owner = self._repo.find_by_device_code(conn, device_code)
            if owner is None:
                raise NotFoundError(f"No location for device {device_code}")

            # Validar antes de tomar el lock
            classify(water_level, owner.bands)

            with self._locks.acquire(owner.id):
                with self._engine.begin() as conn:
                    location = self._repo.find_by_id(conn, owner.id)
                    if location is None:
                        raise NotFoundError(f"Location {owner.id} disappeared")

                    new_status = classify(water_level, location.bands)
                    previous_status = location.current_status
                    duration = 0
                    history: Optional[LocationStatusHistory] = None

                    self._repo.update_current_status(
                        conn, location.id, new_status, float(water_level), rainfall, now
                    )
                    if previous_status != new_status:
                        duration = minutes_between(location.last_update, now)
                        history = self._repo.create_status_history(
                            conn,
                            location_id=location.id,
                            previous_status=previous_status,
                            new_status=new_status,
                            water_level=float(water_level),
                            rainfall=rainfall,
                            duration=duration,
                            changed_at=now,
                            location_name=location.name,
                        )

        updated = replace(
            location,
            current_status=new_status,
            current_water_level=float(water_level),
            current_rainfall=rainfall,
            last_update=now,
        )
        if history is not None:
            logger.info(
                "[LOCATION] Status changed location=%s %s -> %s level=%s duration=%dmin",
                location.name,
                previous_status.value,
                new_status.value,
                water_level,
                duration,
            )
        return StatusProcessingResult(
            location=updated,
            previous_status=previous_status,
            new_status=new_status,
            changed=history is not None,
            history=history,
            duration=duration,
        )

    def get_location(self, location_id: int) -> Location:
        with translate_db_errors("get location"):
            with self._engine.connect() as conn:
                location = self._repo.find_by_id(conn, location_id)
        if location is None:
            raise NotFoundError(f"Location {location_id} not found")
        return location

    def flood_summary(self) -> dict[str, int]:
        with translate_db_errors("flood summary"):
            with self._engine.connect() as conn:
                return self._repo.get_flood_summary(conn)

    def active_flood_warnings(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """Ubicaciones fuera de AMAN, BAHAYA primero, con campos para el dashboard."""
        now = now or utc_now()
        with translate_db_errors("active flood warnings"):
            with self._engine.connect() as conn:
                locations = self._repo.find_active_flood_locations(conn)
        return [
            {
                **location.to_dict(),
                "timeSinceUpdate": time_since(location.last_update, now),
                "statusColor": status_color(location.current_status),
                "progressPercentage": progress_percentage(
                    location.current_water_level, location.bands.bahaya_min
                ),
            }
            for location in locations
        ]

    def count_active(self) -> int:
        with translate_db_errors("count locations"):
            with self._engine.connect() as conn:
                return self._repo.count_active(conn)

    def search(self, query: str) -> list[Location]:
        if not query or not query.strip():
            return []
        with translate_db_errors("search locations"):
            with self._engine.connect() as conn:
                return self._repo.search(conn, query)

    def status_history(
        self,
        page: Any = 1,
        limit: Any = DEFAULT_HISTORY_LIMIT,
        status: Any = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort_by: Any = "changedAt",
        sort_order: Any = "desc",
    ) -> dict[str, Any]:
        params = validate_history_params(page, limit, status, sort_by, sort_order)
        with translate_db_errors("status history"):
            with self._engine.connect() as conn:
                items, total = self._repo.list_status_history(
                    conn,
                    start=to_naive_utc(start) if start else None,
                    end=to_naive_utc(end) if end else None,
                    **params,
                )
        total_pages = math.ceil(total / params["limit"]) if total else 0
        return {
            "data": [item.to_dict() for item in items],
            "pagination": {
                "currentPage": params["page"],
                "totalPages": total_pages,
                "totalItems": total,
                "itemsPerPage": params["limit"],
                "hasNextPage": params["page"] < total_pages,
                "hasPrevPage": params["page"] > 1,
            },
        }

    def recent_history(self, limit: int = 20) -> list[LocationStatusHistory]:
        with translate_db_errors("recent status history"):
            with self._engine.connect() as conn:
                return self._repo.recent_status_history(conn, limit)

    def threshold_info(self, location_id: int, water_level: Optional[float] = None) -> dict[str, Any]:
        """Progreso hacia el siguiente umbral (por defecto con el nivel actual)."""
        location = self.get_location(location_id)
        level = water_level if water_level is not None else (location.current_water_level or 0.0)
        return threshold_info(level, location.bands)

    def update_thresholds(self, location_id: int, bands: ThresholdBands) -> Location:
        for name, value in bands.to_dict().items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidArgumentError(f"Threshold {name} must be a finite number")
        with self._locks.acquire(location_id), translate_db_errors("update thresholds"):
            with self._engine.begin() as conn:
                if not self._repo.update_thresholds(conn, location_id, bands):
                    raise NotFoundError(f"Location {location_id} not found")
                location = self._repo.find_by_id(conn, location_id)
        logger.info("[LOCATION] Thresholds updated location=%s %s", location_id, bands.to_dict())
        return location
