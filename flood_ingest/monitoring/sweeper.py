"""Barrido periódico de dispositivos sin heartbeat.

Corre en un thread daemon mientras haya conexión con el broker: el cliente
MQTT lo arranca al conectar y lo detiene al desconectar.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from ..domain.models import Device, DeviceStatus, utc_now
from ..notifications.device_events import announce_status_change, emit_device_status
from ..notifications.emitter import NotificationEmitter
from ..services.device_directory import DeviceDirectory
from .metrics import DEVICES_MARKED_OFFLINE

logger = logging.getLogger(__name__)


class OfflineSweeper:
    DEFAULT_HEARTBEAT_TIMEOUT = 5.0  # minutos
    DEFAULT_CHECK_INTERVAL = 2.0  # minutos

    def __init__(
        self,
        directory: DeviceDirectory,
        emitter: NotificationEmitter,
        heartbeat_timeout_minutes: float = DEFAULT_HEARTBEAT_TIMEOUT,
        check_interval_minutes: float = DEFAULT_CHECK_INTERVAL,
    ):
        self._directory = directory
        self._emitter = emitter
        self._timeout = heartbeat_timeout_minutes
        self._interval = check_interval_minutes

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Métricas
        self._runs = 0
        self._errors = 0
        self._total_marked = 0
        self._last_run_at = None

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._loop,
                args=(self._stop_event,),
                name="offline-sweeper",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "[SWEEPER] Started with %smin timeout, checking every %smin",
            self._timeout,
            self._interval,
        )

    def stop(self) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()
        if thread is not None:
            if thread is not threading.current_thread():
                thread.join(timeout=5.0)
            logger.info("[SWEEPER] Stopped. runs=%d marked=%d errors=%d", self._runs, self._total_marked, self._errors)

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval * 60):
            self.check_offline_devices()

    def check_offline_devices(self) -> list[Device]:
        """Un tick del barrido. Nunca lanza."""
        self._runs += 1
        self._last_run_at = utc_now()
        try:
            offline = self._directory.mark_offline_if_stale(self._timeout)
        except Exception as e:
            self._errors += 1
            logger.exception("[SWEEPER] Error checking offline devices: %s", e)
            self._emitter.emit_error_notification("offline-sweeper", e, {"timeoutMinutes": self._timeout})
            return []

        if not offline:
            return []

        logger.info("[SWEEPER] Found %d devices that went offline", len(offline))
        self._total_marked += len(offline)
        DEVICES_MARKED_OFFLINE.inc(len(offline))

        for device in offline:
            emit_device_status(self._emitter, device, "timeout")
            announce_status_change(self._emitter, device, DeviceStatus.CONNECTED, "timeout")

        try:
            self._emitter.emit_to_all("device_status_summary", self._directory.status_summary())
        except Exception as e:
            logger.warning("[SWEEPER] Could not refresh status summary: %s", e)
        return offline

    def set_heartbeat_timeout(self, minutes: float) -> None:
        if minutes <= 0:
            raise ValueError("heartbeat timeout must be positive")
        self._timeout = minutes
        logger.info("[SWEEPER] Heartbeat timeout updated to %s minutes", minutes)

    def set_check_interval(self, minutes: float) -> None:
        """Cambia el intervalo; si está corriendo se reinicia con el nuevo valor."""
        if minutes <= 0:
            raise ValueError("check interval must be positive")
        self._interval = minutes
        if self.is_running:
            self.stop()
            self.start()
        logger.info("[SWEEPER] Check interval updated to %s minutes", minutes)

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def heartbeat_timeout(self) -> float:
        return self._timeout

    @property
    def check_interval(self) -> float:
        return self._interval

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "heartbeatTimeoutMinutes": self._timeout,
            "checkIntervalMinutes": self._interval,
            "runs": self._runs,
            "errors": self._errors,
            "totalMarkedOffline": self._total_marked,
            "lastRunAt": self._last_run_at.isoformat() if self._last_run_at else None,
        }
