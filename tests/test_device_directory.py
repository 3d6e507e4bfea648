"""Tests del directorio de dispositivos.

Cubre:
1. Resolución y errores de código
2. Auto-registro idempotente y ubicación de respaldo
3. Heartbeat monotónico y timestamps futuros
4. Barrido offline
5. Override manual y resumen
"""

import threading
from contextlib import contextmanager
from datetime import timedelta

import pytest

from flood_ingest.domain.models import DeviceStatus, utc_now
from flood_ingest.errors import InvalidArgumentError, NotFoundError
from flood_ingest.persistence.device_repository import DeviceRepository
from flood_ingest.services.device_directory import DeviceDirectory

from .conftest import SCENARIO_BANDS


# =============================================================================
# RESOLUCIÓN
# =============================================================================

class TestResolve:
    def test_unknown_code_returns_none(self, directory):
        assert directory.resolve("NOPE") is None

    def test_lookup_is_case_sensitive(self, directory, make_device):
        make_device("ABC1")
        assert directory.resolve("ABC1") is not None
        assert directory.resolve("abc1") is None

    @pytest.mark.parametrize("bad", ["", "   ", None, 42])
    def test_malformed_code_is_invalid_argument(self, directory, bad):
        with pytest.raises(InvalidArgumentError):
            directory.resolve(bad)

    def test_get_unknown_is_not_found(self, directory):
        with pytest.raises(NotFoundError):
            directory.get("MISSING")


# =============================================================================
# AUTO-REGISTRO
# =============================================================================

class TestEnsureExists:
    def test_idempotent_same_id(self, directory):
        """Dos llamadas devuelven el mismo id y no crean una segunda fila."""
        first = directory.ensure_exists("D-100")
        second = directory.ensure_exists("D-100")

        assert first.id == second.id
        assert directory.status_summary()["total"] == 1

    def test_existing_device_gets_heartbeat_touch(self, directory, make_device):
        make_device("D-200")
        device = directory.ensure_exists("D-200")

        assert device.status == DeviceStatus.CONNECTED
        assert device.last_seen is not None

    def test_uses_first_free_location(self, directory, make_location):
        free = make_location("Pintu Air Manggarai")
        device = directory.ensure_exists("D-300")

        assert device.location_id == free.id

    def test_prefers_free_location_matching_hint(self, directory, make_location):
        make_location("Bendung Katulampa")
        hinted = make_location("Pos Depok")

        device = directory.ensure_exists("D-400", location_hint="Pos Depok")

        assert device.location_id == hinted.id

    def test_creates_location_named_after_hint(self, directory, status_service):
        device = directory.ensure_exists("D-500", location_hint="Kampung Melayu")

        location = status_service.get_location(device.location_id)
        assert location.name == "Kampung Melayu"
        assert location.bands == SCENARIO_BANDS

    def test_creates_unknown_location_without_hint(self, directory, status_service):
        device = directory.ensure_exists("D-600")

        assert status_service.get_location(device.location_id).name == "Unknown Location D-600"

    def test_occupied_location_is_not_reused(self, directory, make_device):
        """Una ubicación ya tiene dispositivo: el nuevo recibe otra."""
        existing = make_device("D-700")
        device = directory.ensure_exists("D-701")

        assert device.location_id != existing.location_id

    def test_concurrent_calls_create_one_device(self, directory):
        results = []

        def worker():
            results.append(directory.ensure_exists("D-RACE").id)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results)) == 1
        assert directory.status_summary()["total"] == 1

    def test_lost_create_race_resolves_to_winner(self, engine, make_device):
        """Si otro proceso creó el código primero, se devuelve su registro."""
        winner = make_device("D-RACE2")

        class StaleRepository(DeviceRepository):
            # Primera lectura sin ver la fila del otro proceso
            def __init__(self):
                self.calls = 0

            def find_by_code(self, conn, code):
                self.calls += 1
                if self.calls == 1:
                    return None
                return super().find_by_code(conn, code)

        directory = DeviceDirectory(engine, SCENARIO_BANDS, devices=StaleRepository())
        result = directory.register("D-RACE2")

        assert result.created is False
        assert result.device.id == winner.id


# =============================================================================
# HEARTBEAT
# =============================================================================

class TestHeartbeat:
    def test_unknown_device_is_auto_registered(self, directory, make_location):
        """Un heartbeat de X1 sin registro crea el dispositivo, CONNECTED."""
        make_location("Free Spot")
        change = directory.heartbeat("X1")

        assert change.created is True
        assert change.device.code == "X1"
        assert change.device.status == DeviceStatus.CONNECTED
        assert change.device.location_id is not None
        assert directory.resolve("X1").status == DeviceStatus.CONNECTED

    def test_reports_status_flip(self, directory, make_device):
        make_device("HB-1")
        change = directory.heartbeat("HB-1")

        assert change.previous_status == DeviceStatus.DISCONNECTED
        assert change.changed is True

        again = directory.heartbeat("HB-1")
        assert again.changed is False

    def test_out_of_order_heartbeat_is_ignored(self, directory, make_device):
        make_device("HB-2")
        newer = utc_now() - timedelta(minutes=1)
        older = utc_now() - timedelta(minutes=3)

        directory.heartbeat("HB-2", timestamp=newer)
        stale = directory.heartbeat("HB-2", timestamp=older)

        assert stale.applied is False
        assert directory.get("HB-2").last_seen == newer

    def test_future_timestamp_is_replaced_by_arrival_time(self, directory, make_device):
        make_device("HB-3")
        change = directory.heartbeat("HB-3", timestamp=utc_now() + timedelta(hours=2))

        assert change.device.last_seen <= utc_now()


# =============================================================================
# BARRIDO OFFLINE
# =============================================================================

class TestMarkOfflineIfStale:
    def test_marks_only_stale_connected_devices(self, directory, make_device):
        make_device("OLD", status=DeviceStatus.CONNECTED, last_seen_minutes_ago=10)
        make_device("FRESH", status=DeviceStatus.CONNECTED, last_seen_minutes_ago=1)
        make_device("ALREADY", status=DeviceStatus.DISCONNECTED, last_seen_minutes_ago=60)

        offline = directory.mark_offline_if_stale(5)

        assert [d.code for d in offline] == ["OLD"]
        assert offline[0].status == DeviceStatus.DISCONNECTED
        assert directory.get("OLD").status == DeviceStatus.DISCONNECTED
        assert directory.get("FRESH").status == DeviceStatus.CONNECTED

    def test_connected_without_last_seen_is_stale(self, directory, make_device):
        make_device("NULLSEEN", status=DeviceStatus.CONNECTED)
        assert [d.code for d in directory.mark_offline_if_stale(5)] == ["NULLSEEN"]

    def test_heartbeat_after_scan_wins(self, directory, make_device):
        """Un heartbeat entre la lectura de candidatos y el UPDATE no se pisa."""
        make_device("RACE", status=DeviceStatus.CONNECTED, last_seen_minutes_ago=10)
        original = directory.locks.acquire_many

        @contextmanager
        def heartbeat_then_lock(keys):
            directory.heartbeat("RACE")
            with original(keys):
                yield

        directory.locks.acquire_many = heartbeat_then_lock

        offline = directory.mark_offline_if_stale(5)

        assert offline == []
        assert directory.get("RACE").status == DeviceStatus.CONNECTED

    def test_nothing_to_do(self, directory):
        assert directory.mark_offline_if_stale(5) == []


# =============================================================================
# OVERRIDE Y RESUMEN
# =============================================================================

class TestForceStatusAndSummary:
    def test_force_status(self, directory, make_device):
        make_device("M-1", status=DeviceStatus.CONNECTED)
        change = directory.force_status("M-1", "DISCONNECTED")

        assert change.reason == "manual"
        assert change.changed is True
        assert directory.get("M-1").status == DeviceStatus.DISCONNECTED

    def test_force_status_invalid(self, directory, make_device):
        make_device("M-2")
        with pytest.raises(InvalidArgumentError):
            directory.force_status("M-2", "SLEEPING")

    def test_force_status_unknown_device(self, directory):
        with pytest.raises(NotFoundError):
            directory.force_status("GHOST", DeviceStatus.CONNECTED)

    def test_status_summary(self, directory, make_device):
        make_device("S-1", status=DeviceStatus.CONNECTED)
        make_device("S-2")
        make_device("S-3")

        assert directory.status_summary() == {"total": 3, "connected": 1, "disconnected": 2}
