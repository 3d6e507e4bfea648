"""Espejo de eventos en Redis pub/sub (dashboards en varias instancias)."""

from __future__ import annotations

import logging
from typing import Any, Optional

import orjson
import redis

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "flood:events"


class RedisConnection:
    """Gestiona la conexión a Redis."""

    def __init__(self, url: str):
        self._url = url
        self._client: Optional[redis.Redis] = None
        self._connected = False

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        try:
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=False,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            self._client.ping()
            self._connected = True
            logger.info("[REDIS] Connected: %s", self._url.split("@")[-1])
            return True
        except redis.RedisError as e:
            self._connected = False
            logger.warning("[REDIS] Connection failed: %s", e)
            return False

    def disconnect(self) -> None:
        if self._client:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.debug("[REDIS] Close error: %s", e)
        self._connected = False


class RedisBroadcaster:
    """Publica cada evento como JSON en un canal pub/sub."""

    def __init__(self, connection: RedisConnection, channel: str = DEFAULT_CHANNEL):
        self._conn = connection
        self._channel = channel
        self._published = 0
        self._failed = 0

    def publish(self, event: str, data: Any, room: Optional[str] = None) -> None:
        if not self._conn.is_connected:
            return
        try:
            payload = orjson.dumps({"event": event, "room": room, "data": data}, default=str)
            self._conn.client.publish(self._channel, payload)
            self._published += 1
        except (redis.RedisError, TypeError) as e:
            self._failed += 1
            logger.warning("[REDIS] Publish failed event=%s: %s", event, e)

    @property
    def channel(self) -> str:
        return self._channel

    def get_stats(self) -> dict[str, Any]:
        return {
            "connected": self._conn.is_connected,
            "channel": self._channel,
            "published": self._published,
            "failed": self._failed,
        }
