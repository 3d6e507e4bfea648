"""Repositorio de dispositivos."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Row

from ..domain.models import Device, DeviceStatus, utc_now
from .schema import devices, locations

logger = logging.getLogger(__name__)


def _device_from_row(row: Row) -> Device:
    return Device(
        id=row.id,
        code=row.code,
        location_id=row.location_id,
        description=row.description,
        status=DeviceStatus(row.status),
        last_seen=row.last_seen,
        location_name=row.location_name,
    )


def _select_devices():
    return select(devices, locations.c.name.label("location_name")).outerjoin(
        locations, locations.c.id == devices.c.location_id
    )


class DeviceRepository:
    """Acceso a ``devices``. El código es case-sensitive."""

    def find_by_code(self, conn: Connection, code: str) -> Optional[Device]:
        row = conn.execute(_select_devices().where(devices.c.code == code)).first()
        return _device_from_row(row) if row else None

    def find_by_codes(self, conn: Connection, codes: Iterable[str]) -> list[Device]:
        codes = list(codes)
        if not codes:
            return []
        stmt = _select_devices().where(devices.c.code.in_(codes)).order_by(devices.c.code)
        return [_device_from_row(row) for row in conn.execute(stmt)]

    def create(
        self,
        conn: Connection,
        code: str,
        location_id: int,
        description: Optional[str] = None,
        status: DeviceStatus = DeviceStatus.DISCONNECTED,
        last_seen: Optional[datetime] = None,
    ) -> Device:
        """Inserta un dispositivo. IntegrityError si el código (o la ubicación) ya está usado."""
        conn.execute(
            insert(devices).values(
                code=code,
                location_id=location_id,
                description=description,
                status=status.value,
                last_seen=last_seen,
                created_at=utc_now(),
            )
        )
        return self.find_by_code(conn, code)

    def update_heartbeat(self, conn: Connection, code: str, seen_at: datetime) -> bool:
        """Marca CONNECTED y avanza last_seen.

        Solo avanza: un heartbeat con timestamp anterior al last_seen guardado
        no modifica la fila. Devuelve True si se aplicó.
        """
        result = conn.execute(
            update(devices)
            .where(
                and_(
                    devices.c.code == code,
                    or_(devices.c.last_seen.is_(None), devices.c.last_seen <= seen_at),
                )
            )
            .values(status=DeviceStatus.CONNECTED.value, last_seen=seen_at)
        )
        return result.rowcount > 0

    def update_status(self, conn: Connection, code: str, status: DeviceStatus) -> bool:
        result = conn.execute(
            update(devices).where(devices.c.code == code).values(status=status.value)
        )
        return result.rowcount > 0

    def find_potentially_offline(self, conn: Connection, cutoff: datetime) -> list[Device]:
        """CONNECTED con last_seen nulo o anterior a ``cutoff``."""
        stmt = (
            _select_devices()
            .where(
                and_(
                    devices.c.status == DeviceStatus.CONNECTED.value,
                    or_(devices.c.last_seen.is_(None), devices.c.last_seen < cutoff),
                )
            )
            .order_by(devices.c.code)
        )
        return [_device_from_row(row) for row in conn.execute(stmt)]

    def bulk_mark_disconnected(self, conn: Connection, codes: Iterable[str], cutoff: datetime) -> int:
        """Un solo UPDATE; re-aplica la condición de obsolescencia por fila."""
        codes = list(codes)
        if not codes:
            return 0
        result = conn.execute(
            update(devices)
            .where(
                and_(
                    devices.c.code.in_(codes),
                    devices.c.status == DeviceStatus.CONNECTED.value,
                    or_(devices.c.last_seen.is_(None), devices.c.last_seen < cutoff),
                )
            )
            .values(status=DeviceStatus.DISCONNECTED.value)
        )
        return result.rowcount

    def get_status_summary(self, conn: Connection) -> dict[str, int]:
        rows = conn.execute(select(devices.c.status, func.count()).group_by(devices.c.status)).all()
        counts = {status: count for status, count in rows}
        connected = counts.get(DeviceStatus.CONNECTED.value, 0)
        disconnected = counts.get(DeviceStatus.DISCONNECTED.value, 0)
        return {
            "total": connected + disconnected,
            "connected": connected,
            "disconnected": disconnected,
        }
