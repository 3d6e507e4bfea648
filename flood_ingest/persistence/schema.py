"""Esquema de BD y bootstrap.

Las tablas se declaran con SQLAlchemy Core para que el mismo DDL funcione
en SQLite (dev/tests) y en PostgreSQL/MySQL (producción).
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

FLOOD_STATUS_LEN = 16

locations = Table(
    "locations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("address", Text, nullable=True),
    Column("district", String(100), nullable=True),
    Column("city", String(100), nullable=True),
    Column("province", String(100), nullable=True),
    Column("aman_max", Float, nullable=False, default=0),
    Column("waspada_min", Float, nullable=False, default=0),
    Column("waspada_max", Float, nullable=False, default=0),
    Column("siaga_min", Float, nullable=False, default=0),
    Column("siaga_max", Float, nullable=False, default=0),
    Column("bahaya_min", Float, nullable=False, default=0),
    Column("current_status", String(FLOOD_STATUS_LEN), nullable=False, default="AMAN"),
    Column("current_water_level", Float, nullable=True),
    Column("current_rainfall", Float, nullable=True),
    Column("last_update", DateTime, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
    Index("locations_current_status_idx", "current_status"),
)

devices = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=True),
    # 1:1 dispositivo ↔ ubicación
    Column(
        "location_id",
        Integer,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    ),
    Column("status", String(16), nullable=False, default="DISCONNECTED"),
    Column("last_seen", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Index("devices_status_last_seen_idx", "status", "last_seen"),
)

sensor_logs = Table(
    "sensor_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "device_code",
        String(100),
        ForeignKey("devices.code", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    ),
    Column("rainfall", Float, nullable=True),
    Column("water_level", Float, nullable=True),
    Column("timestamp", DateTime, nullable=False),
    Index("sensor_logs_device_code_timestamp_idx", "device_code", "timestamp"),
)

location_status_history = Table(
    "location_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "location_id",
        Integer,
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("previous_status", String(FLOOD_STATUS_LEN), nullable=False),
    Column("new_status", String(FLOOD_STATUS_LEN), nullable=False),
    Column("water_level", Float, nullable=True),
    Column("rainfall", Float, nullable=True),
    Column("duration", Integer, nullable=False, default=0),
    Column("changed_at", DateTime, nullable=False),
    Index("location_status_history_location_changed_idx", "location_id", "changed_at"),
)


def ensure_schema(engine: Engine) -> None:
    """Crea las tablas si no existen. Seguro de llamar varias veces."""
    logger.info("[DB] Ensuring schema exists")
    try:
        metadata.create_all(engine, checkfirst=True)
    except Exception as e:
        logger.exception("[DB] Schema creation failed: %s", e)
        raise
    logger.info("[DB] Schema ready tables=%s", sorted(metadata.tables))
