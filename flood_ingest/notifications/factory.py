"""Construcción de notificaciones (envelope común)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

SEVERITIES = ("low", "medium", "high", "critical")

LEVEL_TO_SEVERITY = {
    "info": "low",
    "warning": "medium",
    "warn": "medium",
    "error": "high",
    "critical": "critical",
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_notification(type: str, **fields: Any) -> dict[str, Any]:
    """Crea una notificación con id ``<type>-<uuid>`` y timestamp ISO.

    ``severity`` por defecto es ``low``; cualquier campo extra (title,
    deviceCode, locationId, ...) se copia tal cual.
    """
    notification: dict[str, Any] = {
        "id": f"{type}-{uuid.uuid4().hex}",
        "type": type,
        "timestamp": now_iso(),
        "severity": "low",
    }
    notification.update(fields)
    return notification


def severity_for_level(level: str) -> str:
    return LEVEL_TO_SEVERITY.get((level or "").lower(), "medium")
