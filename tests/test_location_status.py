"""Tests del motor de estado de ubicaciones.

Escenarios:
A. Nivel 85 → WASPADA, historial AMAN→WASPADA
B. Siguiente nivel 90 → sigue WASPADA, sin historial nuevo, snapshot en 90
"""

import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from common.db import build_engine

from flood_ingest.domain.models import FloodStatus, ThresholdBands, utc_now
from flood_ingest.errors import InvalidArgumentError, NotFoundError
from flood_ingest.persistence.device_repository import DeviceRepository
from flood_ingest.persistence.location_repository import LocationRepository
from flood_ingest.persistence.schema import ensure_schema, location_status_history
from flood_ingest.services.location_status import (
    LocationStatusService,
    minutes_between,
    progress_percentage,
    status_color,
    time_since,
    validate_history_params,
)

from .conftest import SCENARIO_BANDS


def _history_count(engine, location_id=None):
    with engine.connect() as conn:
        return LocationRepository().count_history(conn, location_id)


# =============================================================================
# ESCENARIOS A / B
# =============================================================================

class TestProcessSensorData:
    def test_scenario_a_transition_creates_history(self, engine, status_service, make_device):
        device = make_device("LOC-A")

        result = status_service.process_sensor_data("LOC-A", 85)

        assert result.previous_status is FloodStatus.AMAN
        assert result.new_status is FloodStatus.WASPADA
        assert result.changed is True
        assert result.history.previous_status is FloodStatus.AMAN
        assert result.history.new_status is FloodStatus.WASPADA
        assert _history_count(engine, device.location_id) == 1

    def test_scenario_b_same_status_updates_snapshot_only(self, engine, status_service, make_device):
        device = make_device("LOC-B")
        status_service.process_sensor_data("LOC-B", 85)

        result = status_service.process_sensor_data("LOC-B", 90)

        assert result.changed is False
        assert result.history is None
        assert result.new_status is FloodStatus.WASPADA
        assert _history_count(engine, device.location_id) == 1
        assert status_service.get_location(device.location_id).current_water_level == 90

    def test_two_different_statuses_produce_exactly_one_row(self, engine, status_service, make_device):
        device = make_device("LOC-C")
        status_service.process_sensor_data("LOC-C", 10)  # AMAN → AMAN
        status_service.process_sensor_data("LOC-C", 160)  # AMAN → SIAGA

        assert _history_count(engine, device.location_id) == 1

    def test_snapshot_fields_updated(self, status_service, make_device):
        device = make_device("LOC-D")
        at = utc_now()
        status_service.process_sensor_data("LOC-D", 210, rainfall=12.5, at=at)

        location = status_service.get_location(device.location_id)
        assert location.current_status is FloodStatus.BAHAYA
        assert location.current_water_level == 210
        assert location.current_rainfall == 12.5
        assert location.last_update == at

    def test_duration_is_minutes_in_previous_status(self, status_service, make_device):
        make_device("LOC-E")
        start = utc_now() - timedelta(minutes=30)
        status_service.process_sensor_data("LOC-E", 10, at=start)

        result = status_service.process_sensor_data("LOC-E", 100, at=start + timedelta(minutes=25))

        assert result.duration == 25
        assert result.history.duration == 25

    def test_duration_zero_without_previous_update(self, status_service, make_device):
        make_device("LOC-F")
        result = status_service.process_sensor_data("LOC-F", 100)
        assert result.duration == 0

    def test_unknown_device_is_not_found(self, status_service):
        with pytest.raises(NotFoundError):
            status_service.process_sensor_data("NOBODY", 50)

    def test_concurrent_readings_keep_history_chain(self, tmp_path):
        """Lecturas concurrentes de la misma ubicación: cadena previous→new sin huecos."""
        file_engine = build_engine(f"sqlite:///{tmp_path / 'flood.db'}")
        ensure_schema(file_engine)
        try:
            with file_engine.begin() as conn:
                location = LocationRepository().create(conn, "Lokasi C", SCENARIO_BANDS)
                DeviceRepository().create(conn, code="C", location_id=location.id)
            service = LocationStatusService(file_engine)

            levels = [10, 85, 160, 250, 10, 90] * 10
            errors = []
            barrier = threading.Barrier(6)

            def worker(chunk):
                barrier.wait()
                for level in chunk:
                    try:
                        service.process_sensor_data("C", level)
                    except Exception as e:
                        errors.append(e)

            threads = [threading.Thread(target=worker, args=(levels[i::6],)) for i in range(6)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert errors == []
            with file_engine.connect() as conn:
                rows = conn.execute(
                    select(location_status_history.c.previous_status, location_status_history.c.new_status)
                    .where(location_status_history.c.location_id == location.id)
                    .order_by(location_status_history.c.id)
                ).all()

            assert rows
            expected_previous = FloodStatus.AMAN.value
            for previous, new in rows:
                assert previous == expected_previous
                assert previous != new
                expected_previous = new
            assert service.get_location(location.id).current_status.value == rows[-1][1]
        finally:
            file_engine.dispose()

    def test_non_finite_level_rejected_without_side_effects(self, engine, status_service, make_device):
        device = make_device("LOC-G")
        with pytest.raises(InvalidArgumentError):
            status_service.process_sensor_data("LOC-G", float("nan"))

        assert status_service.get_location(device.location_id).last_update is None
        assert _history_count(engine) == 0


# =============================================================================
# CONSULTAS DEL DASHBOARD
# =============================================================================

class TestSummaryAndWarnings:
    def test_flood_summary(self, status_service, make_device):
        for code, level in (("W-1", 10), ("W-2", 100), ("W-3", 160), ("W-4", 250), ("W-5", 260)):
            make_device(code)
            status_service.process_sensor_data(code, level)

        assert status_service.flood_summary() == {
            "total": 5,
            "aman": 1,
            "waspada": 1,
            "siaga": 1,
            "bahaya": 2,
            "flooding": 4,
        }

    def test_warnings_ordered_bahaya_first_then_recent(self, status_service, make_device):
        now = utc_now()
        make_device("O-1")
        make_device("O-2")
        make_device("O-3")
        make_device("O-4")
        status_service.process_sensor_data("O-1", 100, at=now - timedelta(minutes=1))  # WASPADA
        status_service.process_sensor_data("O-2", 210, at=now - timedelta(minutes=10))  # BAHAYA viejo
        status_service.process_sensor_data("O-3", 220, at=now - timedelta(minutes=2))  # BAHAYA reciente
        status_service.process_sensor_data("O-4", 20, at=now)  # AMAN, fuera

        warnings = status_service.active_flood_warnings(now)

        assert [w["name"] for w in warnings] == ["Lokasi O-3", "Lokasi O-2", "Lokasi O-1"]
        assert warnings[0]["statusColor"] == "red"
        assert warnings[0]["progressPercentage"] == 100
        assert warnings[2]["statusColor"] == "yellow"
        assert warnings[2]["progressPercentage"] == 50
        assert warnings[2]["timeSinceUpdate"] == "1 min ago"

    def test_thresholds_update_and_info(self, status_service, make_device):
        device = make_device("T-1")
        status_service.process_sensor_data("T-1", 120)

        info = status_service.threshold_info(device.location_id)
        assert info["currentStatus"] == "WASPADA"
        assert info["nextThresholdName"] == "SIAGA"

        bands = ThresholdBands(aman_max=40, waspada_min=41, waspada_max=80, siaga_min=81, siaga_max=110, bahaya_min=111)
        location = status_service.update_thresholds(device.location_id, bands)
        assert location.bands == bands
        assert status_service.threshold_info(device.location_id)["currentStatus"] == "BAHAYA"

    def test_update_thresholds_unknown_location(self, status_service):
        bands = ThresholdBands(1, 2, 3, 4, 5, 6)
        with pytest.raises(NotFoundError):
            status_service.update_thresholds(999, bands)


class TestStatusHistory:
    @pytest.fixture
    def seeded(self, status_service, make_device):
        make_device("H-1")
        base = utc_now() - timedelta(hours=1)
        levels = [100, 160, 210, 20, 90]  # WASPADA, SIAGA, BAHAYA, AMAN, WASPADA
        for i, level in enumerate(levels):
            status_service.process_sensor_data("H-1", level, at=base + timedelta(minutes=i))
        return base

    def test_default_listing_excludes_transitions_to_aman(self, status_service, seeded):
        page = status_service.status_history()

        assert page["pagination"]["totalItems"] == 4
        assert all(item["newStatus"] != "AMAN" for item in page["data"])
        # Más reciente primero
        assert page["data"][0]["newStatus"] == "WASPADA"
        assert page["data"][0]["previousStatus"] == "AMAN"

    def test_status_filter_matches_previous_or_new(self, status_service, seeded):
        page = status_service.status_history(status="bahaya")

        assert page["pagination"]["totalItems"] == 2
        for item in page["data"]:
            assert "BAHAYA" in (item["previousStatus"], item["newStatus"])

    def test_pagination(self, status_service, seeded):
        page = status_service.status_history(page=2, limit=3)

        assert len(page["data"]) == 1
        assert page["pagination"] == {
            "currentPage": 2,
            "totalPages": 2,
            "totalItems": 4,
            "itemsPerPage": 3,
            "hasNextPage": False,
            "hasPrevPage": True,
        }

    def test_date_range(self, status_service, seeded):
        page = status_service.status_history(start=seeded + timedelta(minutes=1, seconds=30))
        assert page["pagination"]["totalItems"] == 2

    def test_recent_history_includes_aman(self, status_service, seeded):
        recent = status_service.recent_history(limit=20)
        assert len(recent) == 5
        assert recent[0].location_name == "Lokasi H-1"


# =============================================================================
# HELPERS
# =============================================================================

class TestHelpers:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ({}, {"page": 1, "limit": 10, "status": None, "sort_by": "changedAt", "sort_order": "desc"}),
            ({"page": "0", "limit": "500"}, {"page": 1, "limit": 100}),
            ({"limit": "-3", "sort_by": "DROP TABLE", "sort_order": "sideways"}, {"limit": 1, "sort_by": "changedAt", "sort_order": "desc"}),
            ({"status": "siaga", "sort_order": "ASC"}, {"status": FloodStatus.SIAGA, "sort_order": "asc"}),
            ({"status": "flooded"}, {"status": None}),
        ],
    )
    def test_validate_history_params(self, raw, expected):
        params = validate_history_params(**raw)
        for key, value in expected.items():
            assert params[key] == value

    def test_status_color(self):
        assert status_color(FloodStatus.SIAGA) == "orange"
        assert status_color("BAHAYA") == "red"
        assert status_color(None) == "gray"

    def test_progress_percentage_caps_at_100(self):
        assert progress_percentage(300, 200) == 100
        assert progress_percentage(50, 200) == 25
        assert progress_percentage(None, 200) == 0

    def test_minutes_between(self):
        t = datetime(2024, 1, 1, 12, 0, 0)
        assert minutes_between(None, t) == 0
        assert minutes_between(t - timedelta(minutes=7, seconds=40), t) == 7

    def test_time_since(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        assert time_since(now - timedelta(seconds=20), now) == "Just now"
        assert time_since(now - timedelta(minutes=5), now) == "5 min ago"


class TestLocationLookups:
    def test_count_active(self, status_service, make_location):
        make_location("Pintu Air Manggarai")
        make_location("Bendung Katulampa")

        assert status_service.count_active() == 2

    def test_search_by_name_or_city(self, status_service, make_location):
        make_location("Pintu Air Manggarai", city="Jakarta Selatan")
        make_location("Bendung Katulampa", city="Bogor")

        assert [loc.name for loc in status_service.search("manggarai")] == ["Pintu Air Manggarai"]
        assert [loc.name for loc in status_service.search("bogor")] == ["Bendung Katulampa"]

    def test_blank_search_returns_nothing(self, status_service, make_location):
        make_location()
        assert status_service.search("   ") == []
