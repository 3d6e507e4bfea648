"""Receptor MQTT de telemetría de inundaciones - punto de entrada principal.

Arma el grafo completo:
- engine / esquema          → common.db + persistence
- servicios de negocio      → services/
- emisor + sinks realtime   → notifications/ + realtime/
- router + handlers         → mqtt/
- barrido offline           → monitoring/sweeper.py (ligado a la conexión MQTT)
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import get_engine

from ..domain.models import DeviceStatus, ThresholdBands
from ..monitoring.health import HealthChecker
from ..monitoring.sweeper import OfflineSweeper
from ..notifications.emitter import NotificationEmitter
from ..persistence.schema import ensure_schema
from ..realtime.broadcaster import Broadcaster, FanoutBroadcaster
from ..realtime.hub import WebSocketHub
from ..realtime.redis_publisher import RedisBroadcaster, RedisConnection
from ..services.device_directory import DeviceDirectory, DeviceStatusChange
from ..services.location_status import LocationStatusService
from ..services.reading_cache import LatestReadingCache
from ..services.sensor_log_store import SensorLogStore
from .client import MQTTClient
from .handlers import DeviceCheckHandler, HeartbeatHandler, SensorDataHandler, announce_device_change
from .router import MessageRouter, RouteResult

logger = logging.getLogger(__name__)


def default_bands(settings: Settings) -> ThresholdBands:
    return ThresholdBands(
        aman_max=settings.default_aman_max,
        waspada_min=settings.default_waspada_min,
        waspada_max=settings.default_waspada_max,
        siaga_min=settings.default_siaga_min,
        siaga_max=settings.default_siaga_max,
        bahaya_min=settings.default_bahaya_min,
    )


class FloodReceiver:
    """Receptor con todos sus componentes.

    Los servicios existen aunque MQTT esté deshabilitado: la API los usa
    para las consultas del dashboard.
    """

    def __init__(
        self,
        settings: Settings,
        engine: Optional[Engine] = None,
        hub: Optional[WebSocketHub] = None,
        sinks: tuple[Broadcaster, ...] = (),
        mqtt_client: Optional[MQTTClient] = None,
    ):
        self.settings = settings
        self.engine = engine or get_engine(settings)
        ensure_schema(self.engine)

        self.hub = hub
        self.broadcaster = FanoutBroadcaster([hub, *sinks] if hub else sinks)
        self._redis: Optional[RedisConnection] = None
        self._mqtt = mqtt_client
        self._running = False

        self.directory = DeviceDirectory(self.engine, default_bands(settings))
        self.sensor_logs = SensorLogStore(self.engine)
        self.locations = LocationStatusService(self.engine)
        self.cache = LatestReadingCache()
        self.emitter = NotificationEmitter(self.broadcaster, presence=hub)

        self.sensor_handler = SensorDataHandler(
            self.directory, self.sensor_logs, self.locations, self.emitter, self.cache
        )
        self.router = MessageRouter(
            settings.mqtt_topic_prefix,
            self.emitter,
            HeartbeatHandler(self.directory, self.emitter),
            DeviceCheckHandler(self.directory, self.emitter),
            self.sensor_handler,
        )
        self.sweeper = OfflineSweeper(
            self.directory,
            self.emitter,
            heartbeat_timeout_minutes=settings.heartbeat_timeout_minutes,
            check_interval_minutes=settings.sweep_interval_minutes,
        )
        self._health = HealthChecker(self.engine)

    def start(self, connect_mqtt: bool = True) -> bool:
        """Conecta Redis (opcional) y MQTT. True si MQTT quedó conectado."""
        if self.settings.redis_broadcast_enabled:
            self._redis = RedisConnection(self.settings.redis_url)
            if self._redis.connect():
                self.broadcaster.add(RedisBroadcaster(self._redis))
            self._health = HealthChecker(self.engine, self._redis)

        self._running = True
        if not connect_mqtt:
            logger.info("[RECEIVER] Started without MQTT")
            return False

        if self._mqtt is None:
            self._mqtt = MQTTClient(
                broker_host=self.settings.mqtt_broker_host,
                broker_port=self.settings.mqtt_broker_port,
                username=self.settings.mqtt_username,
                password=self.settings.mqtt_password,
                client_id=self.settings.mqtt_client_id,
                subscriptions=self.router.subscriptions(),
            )
        self._mqtt.set_message_handler(self.handle_message)
        # El barrido vive mientras haya conexión con el broker
        self._mqtt.add_connect_listener(self.sweeper.start)
        self._mqtt.add_disconnect_listener(self.sweeper.stop)

        connected = self._mqtt.connect()
        logger.info("[RECEIVER] Started mqtt_connected=%s topics=%s", connected, self.router.subscriptions())
        return connected

    def stop(self) -> None:
        self._running = False
        self.sweeper.stop()
        if self._mqtt:
            self._mqtt.disconnect()
        if self._redis:
            self._redis.disconnect()
        logger.info("[RECEIVER] Stopped. %s", self.router.stats)

    def handle_message(self, topic: str, payload: bytes) -> RouteResult:
        return self.router.route(topic, payload)

    def force_device_status(self, code: str, status: DeviceStatus | str, reason: str = "manual") -> DeviceStatusChange:
        """Override manual de conectividad con los mismos eventos que un heartbeat."""
        change = self.directory.force_status(code, status, reason)
        announce_device_change(self.emitter, self.directory, change)
        return change

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._mqtt.is_connected if self._mqtt else False

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "connected": self.is_connected,
            "redis_connected": self._redis.is_connected if self._redis else False,
            "router": self.router.get_routing_stats(),
            "notifications": self.emitter.get_stats(),
            "sweeper": self.sweeper.get_stats(),
            "websocket": self.hub.get_stats() if self.hub else None,
            "cached_devices": len(self.cache),
        }

    def health_check(self) -> dict:
        stats = self.router.stats
        status = self._health.get_status(
            mqtt_connected=self.is_connected,
            sweeper_running=self.sweeper.is_running,
            processed=stats.processed,
            failed=stats.failed,
        )
        return status.to_dict()


# Singleton
_receiver: Optional[FloodReceiver] = None


def get_receiver() -> Optional[FloodReceiver]:
    return _receiver


def start_receiver(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    hub: Optional[WebSocketHub] = None,
    connect_mqtt: Optional[bool] = None,
) -> FloodReceiver:
    """Crea e inicia el receptor singleton (idempotente)."""
    global _receiver

    if _receiver is not None:
        return _receiver

    settings = settings or get_settings()
    _receiver = FloodReceiver(settings, engine=engine, hub=hub)
    _receiver.start(connect_mqtt=settings.mqtt_enabled if connect_mqtt is None else connect_mqtt)
    return _receiver


def stop_receiver() -> None:
    global _receiver

    if _receiver is not None:
        _receiver.stop()
        _receiver = None
