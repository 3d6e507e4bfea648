"""Cache en memoria de la última lectura por dispositivo."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..domain.models import isoformat


@dataclass(frozen=True)
class LatestReading:
    device_code: str
    water_level: Optional[float]
    rainfall: Optional[float]
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "deviceCode": self.device_code,
            "waterLevel": self.water_level,
            "rainfall": self.rainfall,
            "timestamp": isoformat(self.timestamp),
        }


class LatestReadingCache:
    """Mapa código → última lectura recibida.

    Una lectura más antigua que la guardada no la reemplaza.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[str, LatestReading] = {}

    def put(self, reading: LatestReading) -> bool:
        with self._lock:
            current = self._items.get(reading.device_code)
            if current is not None and current.timestamp > reading.timestamp:
                return False
            self._items[reading.device_code] = reading
            return True

    def get(self, device_code: str) -> Optional[LatestReading]:
        with self._lock:
            return self._items.get(device_code)

    def snapshot(self) -> dict[str, LatestReading]:
        with self._lock:
            return dict(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
