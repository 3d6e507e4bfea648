"""Repositorio de ubicaciones y su historial de estado.

Todas las operaciones reciben una ``Connection`` abierta: la transacción la
decide el servicio que llama (p.ej. el motor de estado la abre bajo el lock
de la ubicación).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, case, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Row

from ..domain.models import FloodStatus, Location, LocationStatusHistory, ThresholdBands, utc_now
from .schema import devices, location_status_history, locations

logger = logging.getLogger(__name__)

# Orden de severidad para listar advertencias (BAHAYA primero)
_SEVERITY_RANK = case(
    {"BAHAYA": 3, "SIAGA": 2, "WASPADA": 1},
    value=locations.c.current_status,
    else_=0,
)

HISTORY_SORT_FIELDS = {
    "changedAt": location_status_history.c.changed_at,
    "previousStatus": location_status_history.c.previous_status,
    "newStatus": location_status_history.c.new_status,
    "waterLevel": location_status_history.c.water_level,
    "rainfall": location_status_history.c.rainfall,
    "duration": location_status_history.c.duration,
}


def _bands_from_row(row: Row) -> ThresholdBands:
    return ThresholdBands(
        aman_max=row.aman_max,
        waspada_min=row.waspada_min,
        waspada_max=row.waspada_max,
        siaga_min=row.siaga_min,
        siaga_max=row.siaga_max,
        bahaya_min=row.bahaya_min,
    )


def _location_from_row(row: Row) -> Location:
    return Location(
        id=row.id,
        name=row.name,
        bands=_bands_from_row(row),
        address=row.address,
        district=row.district,
        city=row.city,
        province=row.province,
        current_status=FloodStatus(row.current_status),
        current_water_level=row.current_water_level,
        current_rainfall=row.current_rainfall,
        last_update=row.last_update,
        is_active=bool(row.is_active),
    )


def _history_from_row(row: Row, location_name: Optional[str] = None) -> LocationStatusHistory:
    return LocationStatusHistory(
        id=row.id,
        location_id=row.location_id,
        previous_status=FloodStatus(row.previous_status),
        new_status=FloodStatus(row.new_status),
        water_level=row.water_level,
        rainfall=row.rainfall,
        duration=row.duration,
        changed_at=row.changed_at,
        location_name=location_name,
    )


def _bands_values(bands: ThresholdBands) -> dict[str, float]:
    return {
        "aman_max": bands.aman_max,
        "waspada_min": bands.waspada_min,
        "waspada_max": bands.waspada_max,
        "siaga_min": bands.siaga_min,
        "siaga_max": bands.siaga_max,
        "bahaya_min": bands.bahaya_min,
    }


class LocationRepository:
    """Acceso a ``locations`` y ``location_status_history``."""

    def find_by_id(self, conn: Connection, location_id: int) -> Optional[Location]:
        row = conn.execute(select(locations).where(locations.c.id == location_id)).first()
        return _location_from_row(row) if row else None

    def find_by_device_code(self, conn: Connection, device_code: str) -> Optional[Location]:
        stmt = (
            select(locations)
            .join(devices, devices.c.location_id == locations.c.id)
            .where(devices.c.code == device_code)
        )
        row = conn.execute(stmt).first()
        return _location_from_row(row) if row else None

    def find_free_location(self, conn: Connection, name_hint: Optional[str] = None) -> Optional[Location]:
        """Primera ubicación activa sin dispositivo asignado.

        Si hay ``name_hint`` se prefiere una ubicación libre con ese nombre.
        """
        free = (
            select(locations)
            .outerjoin(devices, devices.c.location_id == locations.c.id)
            .where(and_(devices.c.id.is_(None), locations.c.is_active.is_(True)))
            .order_by(locations.c.id)
        )
        if name_hint:
            row = conn.execute(free.where(locations.c.name == name_hint)).first()
            if row:
                return _location_from_row(row)
        row = conn.execute(free).first()
        return _location_from_row(row) if row else None

    def create(
        self,
        conn: Connection,
        name: str,
        bands: ThresholdBands,
        *,
        address: Optional[str] = None,
        district: Optional[str] = None,
        city: Optional[str] = None,
        province: Optional[str] = None,
    ) -> Location:
        result = conn.execute(
            insert(locations).values(
                name=name,
                address=address,
                district=district,
                city=city,
                province=province,
                current_status=FloodStatus.AMAN.value,
                is_active=True,
                created_at=utc_now(),
                **_bands_values(bands),
            )
        )
        location_id = result.inserted_primary_key[0]
        logger.info("[DB] Location created id=%s name=%s", location_id, name)
        return self.find_by_id(conn, location_id)

    def update_current_status(
        self,
        conn: Connection,
        location_id: int,
        status: FloodStatus,
        water_level: Optional[float],
        rainfall: Optional[float],
        at: datetime,
    ) -> None:
        conn.execute(
            update(locations)
            .where(locations.c.id == location_id)
            .values(
                current_status=status.value,
                current_water_level=water_level,
                current_rainfall=rainfall,
                last_update=at,
            )
        )

    def update_thresholds(self, conn: Connection, location_id: int, bands: ThresholdBands) -> bool:
        result = conn.execute(
            update(locations).where(locations.c.id == location_id).values(**_bands_values(bands))
        )
        return result.rowcount > 0

    def create_status_history(
        self,
        conn: Connection,
        location_id: int,
        previous_status: FloodStatus,
        new_status: FloodStatus,
        water_level: Optional[float],
        rainfall: Optional[float],
        duration: int,
        changed_at: datetime,
        location_name: Optional[str] = None,
    ) -> LocationStatusHistory:
        result = conn.execute(
            insert(location_status_history).values(
                location_id=location_id,
                previous_status=previous_status.value,
                new_status=new_status.value,
                water_level=water_level,
                rainfall=rainfall,
                duration=duration,
                changed_at=changed_at,
            )
        )
        return LocationStatusHistory(
            id=result.inserted_primary_key[0],
            location_id=location_id,
            previous_status=previous_status,
            new_status=new_status,
            water_level=water_level,
            rainfall=rainfall,
            duration=duration,
            changed_at=changed_at,
            location_name=location_name,
        )

    def count_history(self, conn: Connection, location_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(location_status_history)
        if location_id is not None:
            stmt = stmt.where(location_status_history.c.location_id == location_id)
        return conn.execute(stmt).scalar_one()

    def get_flood_summary(self, conn: Connection) -> dict[str, int]:
        rows = conn.execute(
            select(locations.c.current_status, func.count())
            .where(locations.c.is_active.is_(True))
            .group_by(locations.c.current_status)
        ).all()
        counts = {status: 0 for status in FloodStatus}
        for status, count in rows:
            counts[FloodStatus(status)] = count

        waspada = counts[FloodStatus.WASPADA]
        siaga = counts[FloodStatus.SIAGA]
        bahaya = counts[FloodStatus.BAHAYA]
        return {
            "total": sum(counts.values()),
            "aman": counts[FloodStatus.AMAN],
            "waspada": waspada,
            "siaga": siaga,
            "bahaya": bahaya,
            "flooding": waspada + siaga + bahaya,
        }

    def find_active_flood_locations(self, conn: Connection) -> list[Location]:
        stmt = (
            select(locations)
            .where(
                and_(
                    locations.c.current_status != FloodStatus.AMAN.value,
                    locations.c.is_active.is_(True),
                )
            )
            .order_by(_SEVERITY_RANK.desc(), locations.c.last_update.desc(), locations.c.id)
        )
        return [_location_from_row(row) for row in conn.execute(stmt)]

    def count_active(self, conn: Connection) -> int:
        return conn.execute(
            select(func.count()).select_from(locations).where(locations.c.is_active.is_(True))
        ).scalar_one()

    def search(self, conn: Connection, query: str, limit: int = 20) -> list[Location]:
        pattern = f"%{query.strip()}%"
        stmt = (
            select(locations)
            .where(
                or_(
                    locations.c.name.ilike(pattern),
                    locations.c.district.ilike(pattern),
                    locations.c.city.ilike(pattern),
                    locations.c.province.ilike(pattern),
                )
            )
            .order_by(locations.c.name)
            .limit(limit)
        )
        return [_location_from_row(row) for row in conn.execute(stmt)]

    def list_status_history(
        self,
        conn: Connection,
        *,
        page: int,
        limit: int,
        status: Optional[FloodStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort_by: str = "changedAt",
        sort_order: str = "desc",
    ) -> tuple[list[LocationStatusHistory], int]:
        """Historial paginado. Los parámetros llegan ya validados.

        Sin filtro de estado solo se listan transiciones hacia estados de
        alerta (WASPADA/SIAGA/BAHAYA).
        """
        h = location_status_history
        conditions: list[Any] = []
        if status is not None:
            conditions.append(or_(h.c.previous_status == status.value, h.c.new_status == status.value))
        else:
            conditions.append(h.c.new_status != FloodStatus.AMAN.value)
        if start is not None:
            conditions.append(h.c.changed_at >= start)
        if end is not None:
            conditions.append(h.c.changed_at <= end)

        where = and_(*conditions)
        total = conn.execute(select(func.count()).select_from(h).where(where)).scalar_one()

        column = HISTORY_SORT_FIELDS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        stmt = (
            select(h, locations.c.name.label("location_name"))
            .outerjoin(locations, locations.c.id == h.c.location_id)
            .where(where)
            .order_by(ordering, h.c.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = [_history_from_row(row, row.location_name) for row in conn.execute(stmt)]
        return items, total

    def recent_status_history(self, conn: Connection, limit: int = 20) -> list[LocationStatusHistory]:
        h = location_status_history
        stmt = (
            select(h, locations.c.name.label("location_name"))
            .outerjoin(locations, locations.c.id == h.c.location_id)
            .order_by(h.c.changed_at.desc(), h.c.id.desc())
            .limit(limit)
        )
        return [_history_from_row(row, row.location_name) for row in conn.execute(stmt)]
