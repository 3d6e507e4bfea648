"""Tests de clasificación de topics y payloads MQTT."""

from datetime import datetime

import pytest

from flood_ingest.mqtt.messages import (
    DeviceCheck,
    Heartbeat,
    Malformed,
    MessageKind,
    SensorReading,
    Unhandled,
    classify_topic,
    decode_payload,
    parse_message,
)

from .conftest import PREFIX


class TestClassifyTopic:
    @pytest.mark.parametrize(
        "topic,expected",
        [
            (f"{PREFIX}/D1/heartbeat", (MessageKind.HEARTBEAT, "D1")),
            (f"{PREFIX}/D1/sensor", (MessageKind.SENSOR, "D1")),
            (f"{PREFIX}/sensor", (MessageKind.SENSOR, None)),
            (f"{PREFIX}/check/device", (MessageKind.DEVICE_CHECK, None)),
            (f"{PREFIX}/D1/unknown", (MessageKind.UNHANDLED, None)),
            ("other-prefix/D1/sensor", (MessageKind.UNHANDLED, None)),
            (f"{PREFIX}/a/b/sensor", (MessageKind.UNHANDLED, None)),
        ],
    )
    def test_patterns(self, topic, expected):
        assert classify_topic(topic, PREFIX) == expected


class TestDecodePayload:
    def test_json_object(self):
        assert decode_payload(b'{"a": 1}') == {"a": 1}

    def test_string_payload(self):
        assert decode_payload('{"a": 1}') == {"a": 1}

    def test_empty_allowed_only_when_requested(self):
        assert decode_payload(b"", allow_empty=True) == {}
        with pytest.raises(ValueError):
            decode_payload(b"")

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            decode_payload(b"[1, 2]")


class TestParseHeartbeat:
    def test_code_from_topic(self):
        msg = parse_message(f"{PREFIX}/HB-1/heartbeat", b'{"description": "pos 1", "location": "Depok"}', PREFIX)

        assert isinstance(msg, Heartbeat)
        assert msg.device_code == "HB-1"
        assert msg.payload.description == "pos 1"
        assert msg.payload.location == "Depok"

    def test_empty_payload_is_valid(self):
        msg = parse_message(f"{PREFIX}/HB-2/heartbeat", b"", PREFIX)
        assert isinstance(msg, Heartbeat)
        assert msg.payload.timestamp is None

    def test_timestamp_parsed(self):
        msg = parse_message(f"{PREFIX}/HB-3/heartbeat", b'{"timestamp": "2024-05-01T10:00:00Z"}', PREFIX)
        assert msg.payload.timestamp.replace(tzinfo=None) == datetime(2024, 5, 1, 10, 0, 0)

    def test_unparseable_timestamp_is_ignored(self):
        msg = parse_message(f"{PREFIX}/HB-4/heartbeat", b'{"timestamp": "yesterday"}', PREFIX)
        assert isinstance(msg, Heartbeat)
        assert msg.payload.timestamp is None


class TestParseDeviceCheck:
    def test_requires_device_code(self):
        msg = parse_message(f"{PREFIX}/check/device", b'{"description": "x"}', PREFIX)

        assert isinstance(msg, Malformed)
        assert msg.kind is MessageKind.DEVICE_CHECK
        assert msg.error == "Device code not provided"

    def test_code_alias(self):
        msg = parse_message(f"{PREFIX}/check/device", b'{"code": "DC-1", "location": "Bogor"}', PREFIX)

        assert isinstance(msg, DeviceCheck)
        assert msg.device_code == "DC-1"
        assert msg.payload.location == "Bogor"


class TestParseSensor:
    def test_topic_code_and_primary_aliases(self):
        msg = parse_message(f"{PREFIX}/S-1/sensor", b'{"waterlevel_cm": 85, "rainfall_mm": 2.5}', PREFIX)

        assert isinstance(msg, SensorReading)
        assert msg.device_code == "S-1"
        assert msg.payload.water_level == 85
        assert msg.payload.rainfall == 2.5

    def test_alias_priority_first_present_non_null_wins(self):
        payload = b'{"waterlevel_cm": null, "waterLevel": 40, "waterlevel": 99, "rain": 1}'
        msg = parse_message(f"{PREFIX}/S-2/sensor", payload, PREFIX)

        assert msg.payload.water_level == 40
        assert msg.payload.rainfall == 1

    def test_zero_is_present(self):
        msg = parse_message(f"{PREFIX}/S-3/sensor", b'{"waterlevel_cm": 0, "waterLevel": 50}', PREFIX)
        assert msg.payload.water_level == 0

    def test_absent_metrics_are_none(self):
        msg = parse_message(f"{PREFIX}/S-4/sensor", b"{}", PREFIX)

        assert isinstance(msg, SensorReading)
        assert msg.payload.has_metrics is False

    def test_legacy_topic_takes_code_from_payload(self):
        msg = parse_message(f"{PREFIX}/sensor", b'{"deviceCode": "LEG-1", "waterLevel": 12}', PREFIX)

        assert isinstance(msg, SensorReading)
        assert msg.device_code == "LEG-1"

    def test_legacy_topic_without_code_is_malformed(self):
        msg = parse_message(f"{PREFIX}/sensor", b'{"waterLevel": 12}', PREFIX)

        assert isinstance(msg, Malformed)
        assert msg.error == "Sensor data missing device code"

    def test_malformed_json(self):
        msg = parse_message(f"{PREFIX}/S-5/sensor", b"{not json", PREFIX)

        assert isinstance(msg, Malformed)
        assert msg.kind is MessageKind.SENSOR
        assert msg.raw == "{not json"

    @pytest.mark.parametrize("value", ['"high"', "true", "NaN"])
    def test_invalid_metric_is_malformed(self, value):
        msg = parse_message(f"{PREFIX}/S-6/sensor", f'{{"waterLevel": {value}}}'.encode(), PREFIX)
        assert isinstance(msg, Malformed)

    def test_numeric_string_metric_is_coerced(self):
        msg = parse_message(f"{PREFIX}/S-7/sensor", b'{"waterLevel": "85.5"}', PREFIX)
        assert msg.payload.water_level == 85.5


class TestUnhandled:
    def test_unknown_topic(self):
        assert parse_message("weather/station/1", b"{}", PREFIX) == Unhandled("weather/station/1")
