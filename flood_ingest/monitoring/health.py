"""Health checks del servicio."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..realtime.redis_publisher import RedisConnection


@dataclass
class HealthStatus:
    healthy: bool
    mqtt_connected: bool
    db_connected: bool
    redis_connected: bool
    sweeper_running: bool
    messages_processed: int
    messages_failed: int

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "mqtt_connected": self.mqtt_connected,
            "db_connected": self.db_connected,
            "redis_connected": self.redis_connected,
            "sweeper_running": self.sweeper_running,
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
        }


class HealthChecker:
    def __init__(self, engine: Optional[Engine] = None, redis_conn: Optional[RedisConnection] = None):
        self._engine = engine
        self._redis = redis_conn

    def check_database(self) -> bool:
        if not self._engine:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    def check_redis(self) -> bool:
        return bool(self._redis and self._redis.is_connected)

    def get_status(
        self,
        mqtt_connected: bool,
        sweeper_running: bool,
        processed: int,
        failed: int,
    ) -> HealthStatus:
        db_ok = self.check_database()
        return HealthStatus(
            healthy=mqtt_connected and db_ok,
            mqtt_connected=mqtt_connected,
            db_connected=db_ok,
            redis_connected=self.check_redis(),
            sweeper_running=sweeper_running,
            messages_processed=processed,
            messages_failed=failed,
        )
