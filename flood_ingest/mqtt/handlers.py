"""Handlers por tipo de mensaje.

Cada handler recibe un mensaje ya clasificado, llama a los servicios de
negocio y publica los eventos del dashboard. Ante un fallo publica el
evento de error de su tipo y re-lanza; el router convierte la excepción
en una notificación de error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..domain.models import FloodStatus, SensorLog, StatusProcessingResult, bounded_timestamp, isoformat, utc_now
from ..monitoring.metrics import LOCATION_STATUS_CHANGES
from ..notifications.device_events import announce_status_change, emit_device_status
from ..notifications.emitter import NotificationEmitter
from ..notifications.factory import create_notification
from ..services.device_directory import DeviceDirectory, DeviceStatusChange, RegistrationResult
from ..services.location_status import LocationStatusService
from ..services.reading_cache import LatestReading, LatestReadingCache
from ..services.sensor_log_store import SensorLogStore
from .messages import DeviceCheck, Heartbeat, SensorReading

logger = logging.getLogger(__name__)

ALERT_STATUSES = (FloodStatus.WASPADA, FloodStatus.SIAGA, FloodStatus.BAHAYA)

_STATUS_SEVERITY = {
    FloodStatus.BAHAYA: "high",
    FloodStatus.SIAGA: "high",
    FloodStatus.WASPADA: "medium",
}

_STATUS_TITLE = {
    FloodStatus.BAHAYA: "Banjir Ketinggian {level}cm",
    FloodStatus.SIAGA: "Siaga Ketinggian {level}cm",
    FloodStatus.WASPADA: "Waspada Ketinggian {level}cm",
}


def _fmt_level(value: Optional[float]) -> str:
    return f"{value:g}" if value is not None else "-"


def announce_device_change(emitter: NotificationEmitter, directory: DeviceDirectory, change: DeviceStatusChange) -> None:
    """Eventos de estado del dispositivo; notificación + resumen solo si cambió."""
    if not change.applied:
        return
    emit_device_status(emitter, change.device, change.reason)
    if change.changed:
        announce_status_change(
            emitter,
            change.device,
            change.previous_status,
            change.reason,
            summary=directory.status_summary(),
        )


class HeartbeatHandler:
    def __init__(self, directory: DeviceDirectory, emitter: NotificationEmitter):
        self._directory = directory
        self._emitter = emitter

    def handle(self, message: Heartbeat) -> DeviceStatusChange:
        payload = message.payload
        try:
            change = self._directory.heartbeat(
                message.device_code,
                timestamp=payload.timestamp,
                description=payload.description,
                location_hint=payload.location,
            )
            announce_device_change(self._emitter, self._directory, change)
        except Exception as e:
            self._emitter.emit_to_all(
                "device_heartbeat_error",
                {"topic": message.topic, "deviceCode": message.device_code, "error": str(e), "timestamp": isoformat(utc_now())},
            )
            raise

        logger.info(
            "[HEARTBEAT] device=%s status=%s last_seen=%s changed=%s",
            message.device_code,
            change.device.status.value,
            isoformat(change.device.last_seen),
            change.changed,
        )
        return change


class DeviceCheckHandler:
    def __init__(self, directory: DeviceDirectory, emitter: NotificationEmitter):
        self._directory = directory
        self._emitter = emitter

    def handle(self, message: DeviceCheck) -> RegistrationResult:
        code = message.device_code
        payload = message.payload
        now = utc_now()
        try:
            registration = self._directory.register(
                code,
                description=payload.description or f"Auto-created device with code {code}",
                location_hint=payload.location,
                touch=True,
            )
        except Exception as e:
            self._emitter.emit_to_all("device-check-error", {"deviceCode": code, "error": str(e), "timestamp": isoformat(now)})
            raise

        if registration.created:
            self._emitter.emit(
                create_notification(
                    "new_device",
                    title=f"New Device Registered: {code}",
                    deviceCode=code,
                    severity="low",
                    location=payload.location or registration.device.location_name or "Unknown Location",
                    timeframe="baru terdaftar",
                )
            )
        elif registration.status_change is not None:
            announce_device_change(self._emitter, self._directory, registration.status_change)

        logger.info(
            "[DEVICE_CHECK] device=%s id=%s status=%s new=%s",
            code,
            registration.device.id,
            registration.device.status.value,
            registration.created,
        )
        self._emitter.emit_to_all(
            "device-check-result",
            {
                "deviceCode": code,
                "device": registration.device.to_dict(),
                "isNewDevice": registration.created,
                "timestamp": isoformat(now),
            },
        )
        return registration


@dataclass
class SensorOutcome:
    device_code: str
    log: Optional[SensorLog] = None
    status: Optional[StatusProcessingResult] = None


class SensorDataHandler:
    def __init__(
        self,
        directory: DeviceDirectory,
        store: SensorLogStore,
        locations: LocationStatusService,
        emitter: NotificationEmitter,
        cache: Optional[LatestReadingCache] = None,
    ):
        self._directory = directory
        self._store = store
        self._locations = locations
        self._emitter = emitter
        self._cache = cache

    def handle(self, message: SensorReading) -> SensorOutcome:
        code = message.device_code
        payload = message.payload
        arrival = utc_now()
        reading_ts = bounded_timestamp(payload.timestamp, arrival)
        sensor_data = {
            "deviceCode": code,
            "waterlevel": payload.water_level,
            "rainfall": payload.rainfall,
            "timestamp": isoformat(reading_ts),
            "lastUpdate": isoformat(arrival),
        }
        outcome = SensorOutcome(device_code=code)

        # Heartbeat best-effort: un fallo aquí no aborta la lectura
        try:
            announce_device_change(self._emitter, self._directory, self._directory.heartbeat(code))
        except Exception as e:
            logger.warning("[SENSOR] Heartbeat update failed for %s: %s", code, e)

        outcome.log = self._save(sensor_data, payload.rainfall, payload.water_level, reading_ts)

        # Solo lecturas persistidas entran en la caché
        if self._cache is not None and outcome.log is not None:
            self._cache.put(LatestReading(code, payload.water_level, payload.rainfall, reading_ts))

        if payload.water_level is not None:
            outcome.status = self._process_location(code, payload.water_level, payload.rainfall, arrival)

        self._emitter.emit_to_all("sensor-data", sensor_data)
        self._emitter.emit_to_all(f"sensor-data-{code}", sensor_data)
        self._emitter.emit_to_device(code, "sensor-data", sensor_data)
        return outcome

    def _save(
        self,
        sensor_data: dict[str, Any],
        rainfall: Optional[float],
        water_level: Optional[float],
        timestamp: datetime,
    ) -> Optional[SensorLog]:
        if rainfall is None and water_level is None:
            logger.info("[SENSOR] No valid sensor data to save from %s", sensor_data["deviceCode"])
            return None
        try:
            log = self._store.append(sensor_data["deviceCode"], rainfall, water_level, timestamp)
        except Exception as e:
            logger.error("[SENSOR] Failed to save sensor data from %s: %s", sensor_data["deviceCode"], e)
            self._emitter.emit_to_all("sensor-data-error", {**sensor_data, "savedToDatabase": False, "error": str(e)})
            raise

        logger.info(
            "[SENSOR] Saved id=%s device=%s rainfall=%s water_level=%s",
            log.id,
            log.device_code,
            log.rainfall,
            log.water_level,
        )
        self._emitter.emit_to_all("sensor-data-saved", {**sensor_data, "savedToDatabase": True, "logId": log.id})
        return log

    def _process_location(
        self,
        code: str,
        water_level: float,
        rainfall: Optional[float],
        at: datetime,
    ) -> StatusProcessingResult:
        try:
            result = self._locations.process_sensor_data(code, water_level, rainfall, at=at)
        except Exception as e:
            logger.error("[SENSOR] Location processing failed for %s: %s", code, e)
            error_data = {"deviceCode": code, "error": str(e), "timestamp": isoformat(at)}
            self._emitter.emit_to_all("location_processing_error", error_data)
            self._emitter.emit_to_all("sensor-data-error", error_data)
            raise

        if result.changed:
            self._announce_location_change(result, code, water_level, rainfall, at)
        self.update_flood_information(at)
        return result

    def _announce_location_change(
        self,
        result: StatusProcessingResult,
        code: str,
        water_level: float,
        rainfall: Optional[float],
        at: datetime,
    ) -> None:
        location = result.location
        LOCATION_STATUS_CHANGES.labels(new_status=result.new_status.value).inc()
        status_data = {
            "locationId": location.id,
            "locationName": location.name,
            "previousStatus": result.previous_status.value,
            "newStatus": result.new_status.value,
            "waterLevel": water_level,
            "rainfall": rainfall,
            "timestamp": isoformat(at),
            "duration": result.duration,
        }
        self._emitter.emit_to_all("location_status_changed", status_data)
        self._emitter.emit_to_all(f"location_status_{location.id}", status_data)
        self._emitter.emit_to_location(location.id, "location_status_changed", status_data)

        if result.new_status in ALERT_STATUSES and result.history is not None:
            history_data = {
                **result.history.to_dict(),
                "location": {"id": location.id, "name": location.name},
                "deviceCode": code,
                "timestamp": isoformat(at),
            }
            self._emitter.emit_to_all("location_status_history_created", history_data)
            self._emitter.emit_to_all(f"location_history_{location.id}", history_data)
            self._emitter.emit_to_all("flood_status_history_created", history_data)

        if result.new_status != FloodStatus.AMAN:
            self._location_notifications(result, code, water_level, rainfall)

    def _location_notifications(
        self,
        result: StatusProcessingResult,
        code: str,
        water_level: float,
        rainfall: Optional[float],
    ) -> None:
        location = result.location
        history_id = result.history.id if result.history else None
        place = location.district or location.name

        self._emitter.emit(
            create_notification(
                "location_status_change",
                title=_STATUS_TITLE[result.new_status].format(level=_fmt_level(water_level)),
                locationId=location.id,
                locationName=location.name,
                deviceCode=code,
                location=place,
                timeframe=f"dalam {result.duration} minutes" if result.duration else "status berubah",
                severity=_STATUS_SEVERITY[result.new_status],
                previousStatus=result.previous_status.value,
                newStatus=result.new_status.value,
                waterLevel=water_level,
                rainfall=rainfall,
                statusHistoryId=history_id,
            )
        )

        if result.previous_status == FloodStatus.AMAN and result.new_status in ALERT_STATUSES:
            self._emitter.emit(
                create_notification(
                    "new_flood_location",
                    title=f"Lokasi Banjir Baru: {location.name}",
                    locationId=location.id,
                    locationName=location.name,
                    deviceCode=code,
                    location=place,
                    timeframe=f"status {result.new_status.value}",
                    severity="high",
                    newStatus=result.new_status.value,
                    waterLevel=water_level,
                    rainfall=rainfall,
                    statusHistoryId=history_id,
                )
            )

    def update_flood_information(self, at: Optional[datetime] = None) -> None:
        """Refresca advertencias y resumen en los dashboards. Solo loguea errores."""
        at = at or utc_now()
        try:
            warnings = self._locations.active_flood_warnings(at)
            self._emitter.emit_to_all(
                "flood_warnings_updated",
                {"warnings": warnings, "count": len(warnings), "timestamp": isoformat(at)},
            )
            summary = self._locations.flood_summary()
            self._emitter.emit_to_all("flood_summary_updated", {"summary": summary, "timestamp": isoformat(at)})
        except Exception as e:
            logger.error("[SENSOR] Error updating flood information: %s", e)
