"""Estadísticas de enrutamiento de mensajes."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime

from ..domain.models import utc_now


@dataclass
class Stats:
    """Contadores del router. ``record_*`` es thread-safe."""

    received: int = 0
    processed: int = 0
    failed: int = 0
    unhandled: int = 0
    last_message_at: float = 0
    started_at: datetime = field(default_factory=utc_now)
    by_kind: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"failed={self.failed} unhandled={self.unhandled}"
        )

    def record_received(self, kind: str) -> None:
        with self._lock:
            self.received += 1
            self.last_message_at = time.time()
            self.by_kind[kind] = self.by_kind.get(kind, 0) + 1

    def record_processed(self) -> None:
        with self._lock:
            self.processed += 1

    def record_failed(self) -> None:
        with self._lock:
            self.failed += 1

    def record_unhandled(self) -> None:
        with self._lock:
            self.unhandled += 1

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "failed": self.failed,
                "unhandled": self.unhandled,
                "by_kind": dict(self.by_kind),
                "last_message_at": self.last_message_at,
                "started_at": self.started_at.isoformat(),
                "success_rate": self._success_rate(),
            }

    def _success_rate(self) -> float:
        total = self.processed + self.failed
        if total == 0:
            return 1.0
        return self.processed / total

    def reset(self) -> None:
        with self._lock:
            self.received = 0
            self.processed = 0
            self.failed = 0
            self.unhandled = 0
            self.last_message_at = 0
            self.by_kind = {}
            self.started_at = utc_now()
