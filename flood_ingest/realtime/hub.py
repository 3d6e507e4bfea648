"""Hub de WebSockets para dashboards.

Mantiene las conexiones activas y su pertenencia a rooms
(``device-{code}``, ``location-{id}``, ...). ``publish`` es seguro desde
cualquier thread: los handlers MQTT corren en el thread de red de paho y
el envío se agenda en el event loop de la app.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import orjson
from fastapi import WebSocket

from ..domain.models import utc_now
from ..monitoring.metrics import WEBSOCKET_CLIENTS

logger = logging.getLogger(__name__)


@dataclass
class _Client:
    websocket: WebSocket
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=utc_now)


def encode_message(event: str, data: Any) -> str:
    return orjson.dumps({"event": event, "data": data}, default=str).decode()


class WebSocketHub:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._lock = threading.Lock()
        self._clients: dict[str, _Client] = {}
        self._total_connections = 0
        self._peak_connections = 0
        self._messages_sent = 0
        self._send_failures = 0
        # Referencias fuertes a las tareas de broadcast pendientes
        self._tasks: set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Fija el event loop donde se agendan los envíos."""
        self._loop = loop

    async def connect(self, websocket: WebSocket) -> str:
        """Acepta el socket y lo registra. Devuelve el id del cliente."""
        await websocket.accept()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        client_id = uuid.uuid4().hex
        with self._lock:
            self._clients[client_id] = _Client(websocket)
            self._total_connections += 1
            self._peak_connections = max(self._peak_connections, len(self._clients))
            current = len(self._clients)
        WEBSOCKET_CLIENTS.set(current)
        logger.info("[WS] Client connected id=%s current=%d", client_id, current)
        return client_id

    def disconnect(self, client_id: str) -> None:
        """Olvida al cliente y sus rooms."""
        with self._lock:
            removed = self._clients.pop(client_id, None)
            current = len(self._clients)
        if removed is not None:
            WEBSOCKET_CLIENTS.set(current)
            logger.info("[WS] Client disconnected id=%s current=%d", client_id, current)

    def join(self, client_id: str, room: str) -> bool:
        """Une al cliente a una room. False si el cliente no existe."""
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return False
            client.rooms.add(room)
        logger.debug("[WS] Client %s joined room %s", client_id, room)
        return True

    def leave(self, client_id: str, room: str) -> bool:
        """Saca al cliente de una room."""
        with self._lock:
            client = self._clients.get(client_id)
            if client is None or room not in client.rooms:
                return False
            client.rooms.discard(room)
        return True

    async def send_to(self, client_id: str, event: str, data: Any) -> bool:
        """Envía un evento a un solo cliente."""
        with self._lock:
            client = self._clients.get(client_id)
        if client is None:
            return False
        return await self._send(client_id, client.websocket, encode_message(event, data))

    async def broadcast(self, event: str, data: Any, room: Optional[str] = None) -> int:
        """Envía a todos (o a una room). Devuelve cuántos clientes lo recibieron."""
        message = encode_message(event, data)
        with self._lock:
            targets = [
                (client_id, client.websocket)
                for client_id, client in self._clients.items()
                if room is None or room in client.rooms
            ]
        delivered = 0
        for client_id, websocket in targets:
            if await self._send(client_id, websocket, message):
                delivered += 1
        return delivered

    def publish(self, event: str, data: Any, room: Optional[str] = None) -> None:
        """Agenda un broadcast desde cualquier thread. Sin loop ligado, descarta."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("[WS] No event loop bound, dropping event=%s", event)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self.broadcast(event, data, room))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            asyncio.run_coroutine_threadsafe(self.broadcast(event, data, room), loop)

    async def _send(self, client_id: str, websocket: WebSocket, message: str) -> bool:
        try:
            await websocket.send_text(message)
        except Exception as e:
            logger.info("[WS] Send failed id=%s, dropping client: %s", client_id, e)
            with self._lock:
                self._send_failures += 1
            self.disconnect(client_id)
            return False
        with self._lock:
            self._messages_sent += 1
        return True

    @property
    def client_count(self) -> int:
        """Clientes conectados."""
        with self._lock:
            return len(self._clients)

    def active_rooms(self) -> list[str]:
        """Rooms con al menos un cliente."""
        with self._lock:
            return sorted({room for client in self._clients.values() for room in client.rooms})

    def clients_in_room(self, room: str) -> int:
        """Cuántos clientes hay en la room."""
        with self._lock:
            return sum(1 for client in self._clients.values() if room in client.rooms)

    def rooms_of(self, client_id: str) -> list[str]:
        """Rooms del cliente, ordenadas."""
        with self._lock:
            client = self._clients.get(client_id)
            return sorted(client.rooms) if client else []

    def get_stats(self) -> dict[str, Any]:
        """Contadores de conexiones y envíos."""
        with self._lock:
            return {
                "current": len(self._clients),
                "total": self._total_connections,
                "peak": self._peak_connections,
                "messagesSent": self._messages_sent,
                "sendFailures": self._send_failures,
                "pendingBroadcasts": len(self._tasks),
                "rooms": len({room for client in self._clients.values() for room in client.rooms}),
            }
