"""Fixtures compartidas: SQLite en memoria, broadcaster de grabación y servicios."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

import pytest

from common.config import Settings
from common.db import build_engine
from flood_ingest.domain.models import ThresholdBands, utc_now
from flood_ingest.mqtt.handlers import DeviceCheckHandler, HeartbeatHandler, SensorDataHandler
from flood_ingest.mqtt.router import MessageRouter
from flood_ingest.notifications.emitter import NotificationEmitter
from flood_ingest.persistence.device_repository import DeviceRepository
from flood_ingest.persistence.location_repository import LocationRepository
from flood_ingest.persistence.schema import ensure_schema
from flood_ingest.services.device_directory import DeviceDirectory
from flood_ingest.services.location_status import LocationStatusService
from flood_ingest.services.reading_cache import LatestReadingCache
from flood_ingest.services.sensor_log_store import SensorLogStore

PREFIX = "binatra-device"

SCENARIO_BANDS = ThresholdBands(
    aman_max=79,
    waspada_min=80,
    waspada_max=149,
    siaga_min=150,
    siaga_max=199,
    bahaya_min=200,
)


class RecordingBroadcaster:
    """Guarda cada publish para inspeccionarlo en los tests."""

    def __init__(self):
        self.published: list[tuple[str, Any, Optional[str]]] = []

    def publish(self, event: str, data: Any, room: Optional[str] = None) -> None:
        self.published.append((event, data, room))

    def events(self, event: str, room: Optional[str] = None) -> list[Any]:
        return [data for name, data, r in self.published if name == event and r == room]

    def notifications(self, type_: Optional[str] = None) -> list[dict]:
        return [
            data
            for data in self.events("new-notification")
            if type_ is None or data.get("type") == type_
        ]

    def clear(self) -> None:
        self.published.clear()


# =============================================================================
# INFRAESTRUCTURA
# =============================================================================

@pytest.fixture
def engine():
    """Engine SQLite en memoria (StaticPool) con el esquema creado."""
    eng = build_engine("sqlite://")
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        mqtt_broker_host="localhost",
        mqtt_broker_port=1883,
        mqtt_username=None,
        mqtt_password=None,
        mqtt_client_id="flood-ingest-test",
        mqtt_topic_prefix=PREFIX,
        heartbeat_timeout_minutes=5,
        sweep_interval_minutes=2,
        redis_url="redis://localhost:6379/0",
        mqtt_enabled=False,
        redis_broadcast_enabled=False,
        log_level="INFO",
        default_aman_max=SCENARIO_BANDS.aman_max,
        default_waspada_min=SCENARIO_BANDS.waspada_min,
        default_waspada_max=SCENARIO_BANDS.waspada_max,
        default_siaga_min=SCENARIO_BANDS.siaga_min,
        default_siaga_max=SCENARIO_BANDS.siaga_max,
        default_bahaya_min=SCENARIO_BANDS.bahaya_min,
    )


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def emitter(broadcaster) -> NotificationEmitter:
    return NotificationEmitter(broadcaster)


# =============================================================================
# DATOS
# =============================================================================

@pytest.fixture
def make_location(engine):
    """Crea una ubicación con las bandas del escenario (o las indicadas)."""

    def _make(name: str = "Kali Ciliwung", bands: ThresholdBands = SCENARIO_BANDS, **meta):
        with engine.begin() as conn:
            return LocationRepository().create(conn, name, bands, **meta)

    return _make


@pytest.fixture
def make_device(engine, make_location):
    """Crea un dispositivo (con ubicación propia si no se pasa una)."""

    def _make(code: str, location_id: Optional[int] = None, last_seen_minutes_ago: Optional[float] = None, **kwargs):
        if location_id is None:
            location_id = make_location(f"Lokasi {code}").id
        last_seen = None
        if last_seen_minutes_ago is not None:
            last_seen = utc_now() - timedelta(minutes=last_seen_minutes_ago)
        with engine.begin() as conn:
            return DeviceRepository().create(conn, code=code, location_id=location_id, last_seen=last_seen, **kwargs)

    return _make


# =============================================================================
# SERVICIOS
# =============================================================================

@pytest.fixture
def directory(engine) -> DeviceDirectory:
    return DeviceDirectory(engine, SCENARIO_BANDS)


@pytest.fixture
def store(engine) -> SensorLogStore:
    return SensorLogStore(engine)


@pytest.fixture
def status_service(engine) -> LocationStatusService:
    return LocationStatusService(engine)


@pytest.fixture
def cache() -> LatestReadingCache:
    return LatestReadingCache()


@pytest.fixture
def router(directory, store, status_service, emitter, cache) -> MessageRouter:
    return MessageRouter(
        PREFIX,
        emitter,
        HeartbeatHandler(directory, emitter),
        DeviceCheckHandler(directory, emitter),
        SensorDataHandler(directory, store, status_service, emitter, cache),
    )
