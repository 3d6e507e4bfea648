from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from flood_ingest.errors import FatalError


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _number(name: str, default: str, cast=float):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise FatalError(f"Invalid value for {name}: {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    database_url: str

    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: str | None
    mqtt_password: str | None
    mqtt_client_id: str
    mqtt_topic_prefix: str

    heartbeat_timeout_minutes: float
    sweep_interval_minutes: float

    redis_url: str
    mqtt_enabled: bool
    redis_broadcast_enabled: bool
    log_level: str

    # Bandas para ubicaciones creadas automáticamente
    default_aman_max: float
    default_waspada_min: float
    default_waspada_max: float
    default_siaga_min: float
    default_siaga_max: float
    default_bahaya_min: float


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("FLOOD_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    timeout = _number("HEARTBEAT_TIMEOUT_MINUTES", "5")
    interval = _number("SWEEP_INTERVAL_MINUTES", "2")
    if timeout <= 0 or interval <= 0:
        raise FatalError("HEARTBEAT_TIMEOUT_MINUTES and SWEEP_INTERVAL_MINUTES must be positive")

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./flood_monitor.db"),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=_number("MQTT_BROKER_PORT", "1883", int),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "flood-ingest"),
        mqtt_topic_prefix=os.getenv("MQTT_TOPIC_PREFIX", "binatra-device").strip("/"),
        heartbeat_timeout_minutes=timeout,
        sweep_interval_minutes=interval,
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        mqtt_enabled=_flag("FF_MQTT_ENABLED", "true"),
        redis_broadcast_enabled=_flag("FF_REDIS_BROADCAST"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        default_aman_max=_number("DEFAULT_AMAN_MAX", "79"),
        default_waspada_min=_number("DEFAULT_WASPADA_MIN", "80"),
        default_waspada_max=_number("DEFAULT_WASPADA_MAX", "149"),
        default_siaga_min=_number("DEFAULT_SIAGA_MIN", "150"),
        default_siaga_max=_number("DEFAULT_SIAGA_MAX", "199"),
        default_bahaya_min=_number("DEFAULT_BAHAYA_MIN", "200"),
    )
