"""Repositorio append-only de lecturas crudas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, insert, select
from sqlalchemy.engine import Connection, Row

from ..domain.models import SensorLog, SensorStatistics
from .schema import sensor_logs


def _log_from_row(row: Row) -> SensorLog:
    return SensorLog(
        id=row.id,
        device_code=row.device_code,
        rainfall=row.rainfall,
        water_level=row.water_level,
        timestamp=row.timestamp,
    )


def _metric_stats(conn: Connection, column, where) -> dict[str, Optional[float]]:
    avg, minimum, maximum, count = conn.execute(
        select(func.avg(column), func.min(column), func.max(column), func.count(column)).where(where)
    ).one()
    return {
        "avg": float(avg) if avg is not None else None,
        "min": minimum,
        "max": maximum,
        "count": count,
    }


class SensorLogRepository:
    """Acceso a ``sensor_logs``. Orden por (timestamp, id)."""

    def insert(
        self,
        conn: Connection,
        device_code: str,
        rainfall: Optional[float],
        water_level: Optional[float],
        timestamp: datetime,
    ) -> SensorLog:
        result = conn.execute(
            insert(sensor_logs).values(
                device_code=device_code,
                rainfall=rainfall,
                water_level=water_level,
                timestamp=timestamp,
            )
        )
        return SensorLog(
            id=result.inserted_primary_key[0],
            device_code=device_code,
            rainfall=rainfall,
            water_level=water_level,
            timestamp=timestamp,
        )

    def latest(self, conn: Connection, device_code: str) -> Optional[SensorLog]:
        row = conn.execute(
            select(sensor_logs)
            .where(sensor_logs.c.device_code == device_code)
            .order_by(sensor_logs.c.timestamp.desc(), sensor_logs.c.id.desc())
            .limit(1)
        ).first()
        return _log_from_row(row) if row else None

    def range(self, conn: Connection, device_code: str, start: datetime, end: datetime) -> list[SensorLog]:
        stmt = (
            select(sensor_logs)
            .where(
                and_(
                    sensor_logs.c.device_code == device_code,
                    sensor_logs.c.timestamp >= start,
                    sensor_logs.c.timestamp <= end,
                )
            )
            .order_by(sensor_logs.c.timestamp.asc(), sensor_logs.c.id.asc())
        )
        return [_log_from_row(row) for row in conn.execute(stmt)]

    def statistics(self, conn: Connection, device_code: str, start: datetime, end: datetime) -> SensorStatistics:
        where = and_(
            sensor_logs.c.device_code == device_code,
            sensor_logs.c.timestamp >= start,
            sensor_logs.c.timestamp <= end,
        )
        count = conn.execute(select(func.count()).select_from(sensor_logs).where(where)).scalar_one()
        return SensorStatistics(
            device_code=device_code,
            count=count,
            rainfall=_metric_stats(conn, sensor_logs.c.rainfall, where),
            water_level=_metric_stats(conn, sensor_logs.c.water_level, where),
        )
