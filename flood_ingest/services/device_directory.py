"""Directorio de dispositivos: resolución, auto-registro y conectividad.

Toda mutación sobre un dispositivo se hace bajo el lock de su código, de
modo que un heartbeat, una lectura y el barrido offline del mismo
dispositivo nunca se intercalan dentro del proceso. Entre procesos, la
restricción UNIQUE sobre ``devices.code`` decide el ganador de una carrera
de creación.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..domain.models import Device, DeviceStatus, ThresholdBands, bounded_timestamp, to_naive_utc, utc_now
from ..errors import ConflictError, InvalidArgumentError, NotFoundError
from ..persistence.device_repository import DeviceRepository
from ..persistence.errors import translate_db_errors
from ..persistence.location_repository import LocationRepository
from .locks import KeyedLock

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown Location"


@dataclass
class DeviceStatusChange:
    """Resultado de una operación que puede cambiar la conectividad."""

    device: Device
    previous_status: DeviceStatus
    reason: str
    created: bool = False
    applied: bool = True

    @property
    def changed(self) -> bool:
        return self.previous_status != self.device.status


@dataclass
class RegistrationResult:
    device: Device
    created: bool
    # Solo cuando register(touch=True) encontró un dispositivo existente
    status_change: Optional[DeviceStatusChange] = None


def validate_device_code(code: object) -> str:
    if not isinstance(code, str) or not code.strip():
        raise InvalidArgumentError(f"Invalid device code: {code!r}")
    return code


class DeviceDirectory:
    """Fuente de verdad de dispositivos y su estado CONNECTED/DISCONNECTED."""

    CREATE_ATTEMPTS = 3

    def __init__(
        self,
        engine: Engine,
        default_bands: ThresholdBands,
        locks: Optional[KeyedLock] = None,
        devices: Optional[DeviceRepository] = None,
        locations: Optional[LocationRepository] = None,
    ):
        self._engine = engine
        self._default_bands = default_bands
        self._locks = locks or KeyedLock("device")
        self._devices = devices or DeviceRepository()
        self._locations = locations or LocationRepository()

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def resolve(self, code: str) -> Optional[Device]:
        """Búsqueda exacta (case-sensitive). None si no existe."""
        code = validate_device_code(code)
        with translate_db_errors("resolve device"):
            with self._engine.connect() as conn:
                return self._devices.find_by_code(conn, code)

    def get(self, code: str) -> Device:
        device = self.resolve(code)
        if device is None:
            raise NotFoundError(f"Device {code} not found")
        return device

    def register(
        self,
        code: str,
        description: Optional[str] = None,
        location_hint: Optional[str] = None,
        touch: bool = False,
    ) -> RegistrationResult:
        """Devuelve el dispositivo existente o lo crea bajo una ubicación de respaldo.

        Con ``touch=True`` un dispositivo existente recibe además un heartbeat.
        """
        code = validate_device_code(code)
        with self._locks.acquire(code), translate_db_errors("register device"):
            with self._engine.connect() as conn:
                existing = self._devices.find_by_code(conn, code)
            if existing is None:
                return self._create(code, description, location_hint)
            if not touch:
                return RegistrationResult(existing, created=False)
            change = self._touch(code, utc_now(), previous=existing.status)
            return RegistrationResult(change.device, created=False, status_change=change)

    def ensure_exists(
        self,
        code: str,
        description: Optional[str] = None,
        location_hint: Optional[str] = None,
    ) -> Device:
        """Como ``register``; si ya existía equivale a un heartbeat."""
        return self.register(code, description, location_hint, touch=True).device

    def heartbeat(
        self,
        code: str,
        timestamp: Optional[datetime] = None,
        description: Optional[str] = None,
        location_hint: Optional[str] = None,
    ) -> DeviceStatusChange:
        """Marca CONNECTED y avanza last_seen; auto-registra si no existe."""
        code = validate_device_code(code)
        seen_at = bounded_timestamp(timestamp)
        if timestamp is not None and seen_at != to_naive_utc(timestamp):
            logger.warning("[DEVICES] Heartbeat from %s is in the future (%s), using arrival time", code, timestamp)
        with self._locks.acquire(code):
            registration = self.register(code, description, location_hint)
            change = self._touch(code, seen_at, previous=registration.device.status)
            change.created = registration.created
            return change

    def mark_offline_if_stale(self, timeout_minutes: float) -> list[Device]:
        """Pasa a DISCONNECTED los CONNECTED sin heartbeat en ``timeout_minutes``.

        Los candidatos se releen bajo sus locks y el UPDATE masivo vuelve a
        aplicar la condición, así que un heartbeat concurrente nunca queda
        sobrescrito.
        """
        cutoff = utc_now() - timedelta(minutes=timeout_minutes)
        with translate_db_errors("mark offline devices"):
            with self._engine.connect() as conn:
                candidates = self._devices.find_potentially_offline(conn, cutoff)
            if not candidates:
                return []

            codes = [device.code for device in candidates]
            with self._locks.acquire_many(codes):
                with self._engine.begin() as conn:
                    stale = [
                        device
                        for device in self._devices.find_by_codes(conn, codes)
                        if device.status == DeviceStatus.CONNECTED
                        and (device.last_seen is None or device.last_seen < cutoff)
                    ]
                    updated = self._devices.bulk_mark_disconnected(
                        conn, [device.code for device in stale], cutoff
                    )

        if updated != len(stale):
            logger.warning("[DEVICES] Offline sweep updated=%d expected=%d", updated, len(stale))
        if stale:
            logger.info(
                "[DEVICES] Marked %d devices DISCONNECTED (timeout=%smin): %s",
                len(stale),
                timeout_minutes,
                [device.code for device in stale],
            )
        return [replace(device, status=DeviceStatus.DISCONNECTED) for device in stale]

    def force_status(self, code: str, status: DeviceStatus | str, reason: str = "manual") -> DeviceStatusChange:
        """Override manual del estado de conectividad."""
        code = validate_device_code(code)
        try:
            status = DeviceStatus(status)
        except ValueError:
            raise InvalidArgumentError(f"Invalid device status: {status!r}")

        with self._locks.acquire(code), translate_db_errors("force device status"):
            with self._engine.begin() as conn:
                before = self._devices.find_by_code(conn, code)
                if before is None:
                    raise NotFoundError(f"Device {code} not found")
                self._devices.update_status(conn, code, status)
                device = self._devices.find_by_code(conn, code)

        logger.info("[DEVICES] Forced status device=%s %s -> %s (%s)", code, before.status.value, status.value, reason)
        return DeviceStatusChange(device=device, previous_status=before.status, reason=reason)

    def status_summary(self) -> dict[str, int]:
        with translate_db_errors("device status summary"):
            with self._engine.connect() as conn:
                return self._devices.get_status_summary(conn)

    def _touch(
        self,
        code: str,
        seen_at: datetime,
        previous: Optional[DeviceStatus] = None,
    ) -> DeviceStatusChange:
        with translate_db_errors("device heartbeat"):
            with self._engine.begin() as conn:
                if previous is None:
                    before = self._devices.find_by_code(conn, code)
                    if before is None:
                        raise NotFoundError(f"Device {code} not found")
                    previous = before.status
                applied = self._devices.update_heartbeat(conn, code, seen_at)
                device = self._devices.find_by_code(conn, code)

        if device is None:
            raise NotFoundError(f"Device {code} not found")
        if not applied:
            logger.info(
                "[DEVICES] Ignored out-of-order heartbeat device=%s ts=%s last_seen=%s",
                code,
                seen_at.isoformat(),
                device.last_seen.isoformat() if device.last_seen else None,
            )
        return DeviceStatusChange(device=device, previous_status=previous, reason="heartbeat", applied=applied)

    def _create(self, code: str, description: Optional[str], location_hint: Optional[str]) -> RegistrationResult:
        last_error: Optional[IntegrityError] = None
        for _ in range(self.CREATE_ATTEMPTS):
            try:
                with self._engine.begin() as conn:
                    location_id = self._fallback_location_id(conn, code, location_hint)
                    device = self._devices.create(
                        conn,
                        code=code,
                        location_id=location_id,
                        description=description or f"Auto-created device {code}",
                    )
                logger.info(
                    "[DEVICES] New device created code=%s location_id=%s location=%s",
                    code,
                    device.location_id,
                    device.location_name,
                )
                return RegistrationResult(device, created=True)
            except IntegrityError as e:
                # Otro proceso creó el código o tomó la ubicación libre
                last_error = e
                with self._engine.connect() as conn:
                    winner = self._devices.find_by_code(conn, code)
                if winner is not None:
                    logger.info("[DEVICES] Lost create race for %s, using existing id=%s", code, winner.id)
                    return RegistrationResult(winner, created=False)

        raise ConflictError(f"Could not register device {code}") from last_error

    def _fallback_location_id(self, conn, code: str, location_hint: Optional[str]) -> int:
        hint = location_hint.strip() if isinstance(location_hint, str) and location_hint.strip() else None
        location = self._locations.find_free_location(conn, hint)
        if location is not None:
            return location.id

        if hint is None or hint == UNKNOWN_LOCATION:
            name = f"{UNKNOWN_LOCATION} {code}"
        else:
            name = hint
        return self._locations.create(conn, name, self._default_bands).id
