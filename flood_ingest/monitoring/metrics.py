"""Métricas Prometheus del servicio de ingesta."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

MQTT_MESSAGES = Counter(
    "flood_ingest_mqtt_messages_total",
    "MQTT messages routed",
    ["kind", "status"],  # kind: heartbeat/device_check/sensor/unhandled/malformed
)
MQTT_PROCESSING_LATENCY = Histogram(
    "flood_ingest_mqtt_processing_seconds",
    "MQTT message processing latency",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
MQTT_CONNECTED = Gauge(
    "flood_ingest_mqtt_connected",
    "MQTT client connection status",
)
NOTIFICATIONS_EMITTED = Counter(
    "flood_ingest_notifications_total",
    "Notifications emitted",
    ["type", "severity"],
)
NOTIFICATIONS_REJECTED = Counter(
    "flood_ingest_notifications_rejected_total",
    "Notifications rejected by validation or sink failure",
)
DEVICES_MARKED_OFFLINE = Counter(
    "flood_ingest_devices_marked_offline_total",
    "Devices set DISCONNECTED by the offline sweeper",
)
LOCATION_STATUS_CHANGES = Counter(
    "flood_ingest_location_status_changes_total",
    "Location flood status transitions",
    ["new_status"],
)
WEBSOCKET_CLIENTS = Gauge(
    "flood_ingest_websocket_clients",
    "Connected dashboard WebSocket clients",
)
