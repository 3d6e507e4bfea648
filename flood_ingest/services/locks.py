"""Locks por clave (código de dispositivo / id de ubicación)."""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Hashable, Iterable, Iterator


class KeyedLock:
    """Un ``threading.RLock`` por clave, creado bajo demanda.

    Serializa las mutaciones sobre la misma entidad sin bloquear entidades
    distintas. Las claves no se liberan: el número de dispositivos y
    ubicaciones está acotado.
    """

    def __init__(self, name: str = "keyed"):
        self._name = name
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def acquire(self, key: Hashable) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

    @contextmanager
    def acquire_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Toma varios locks en orden estable para evitar deadlocks."""
        ordered = sorted(set(keys), key=str)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self.acquire(key))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def __repr__(self) -> str:
        return f"KeyedLock(name={self._name!r}, keys={len(self)})"
