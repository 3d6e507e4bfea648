"""Contrato de los sinks de broadcast y composición de varios sinks."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Broadcaster(Protocol):
    """Sink de eventos en tiempo real.

    ``room=None`` → todos los clientes; con room → solo los suscritos a ella.
    Debe poder llamarse desde cualquier thread y no bloquear esperando a
    los clientes.
    """

    def publish(self, event: str, data: Any, room: Optional[str] = None) -> None:
        ...


class FanoutBroadcaster:
    """Reenvía cada evento a todos los sinks; un sink que falla no frena al resto."""

    def __init__(self, sinks: Iterable[Broadcaster] = ()):
        self._sinks: list[Broadcaster] = list(sinks)

    def add(self, sink: Broadcaster) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> list[Broadcaster]:
        return list(self._sinks)

    def publish(self, event: str, data: Any, room: Optional[str] = None) -> None:
        failures = 0
        for sink in self._sinks:
            try:
                sink.publish(event, data, room)
            except Exception as e:
                failures += 1
                logger.warning("[FANOUT] Sink %s failed for event=%s: %s", type(sink).__name__, event, e)
        if failures and failures == len(self._sinks):
            raise RuntimeError(f"All {failures} broadcast sinks failed for event {event}")
