"""Sesión WebSocket del dashboard.

Al conectar se envía el estado inicial (resumen de dispositivos, resumen
de inundación, alertas activas y las últimas 20 transiciones). Después el
cliente puede suscribirse a rooms (``device-{code}``, ``location-{id}``...)
y hacer ping.
"""

from __future__ import annotations

import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from ..domain.models import isoformat, utc_now
from ..errors import FloodIngestError
from ..mqtt.receiver import FloodReceiver
from ..realtime.hub import WebSocketHub
from ..schemas import ClientAction

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)

INITIAL_HISTORY_LIMIT = 20


def _initial_data(receiver: FloodReceiver) -> list[tuple[str, object]]:
    return [
        ("device_status_summary", receiver.directory.status_summary()),
        ("flood_summary", receiver.locations.flood_summary()),
        ("flood_warnings_updated", receiver.locations.active_flood_warnings()),
        (
            "location_status_history_initial",
            [item.to_dict() for item in receiver.locations.recent_history(INITIAL_HISTORY_LIMIT)],
        ),
    ]


async def _send_initial_data(hub: WebSocketHub, client_id: str, receiver: FloodReceiver) -> None:
    try:
        # Consultas síncronas a la base fuera del event loop
        events = await run_in_threadpool(_initial_data, receiver)
    except FloodIngestError as e:
        logger.warning("[WS] Initial data failed id=%s: %s", client_id, e)
        await hub.send_to(client_id, "error", {"message": "initial data unavailable"})
        return

    for event, data in events:
        await hub.send_to(client_id, event, data)


async def _handle_client_message(hub: WebSocketHub, client_id: str, raw: str) -> None:
    try:
        message = ClientAction.model_validate(orjson.loads(raw))
    except (orjson.JSONDecodeError, ValidationError) as e:
        await hub.send_to(client_id, "error", {"message": f"invalid message: {e}"})
        return

    if message.action == "ping":
        await hub.send_to(client_id, "pong", {"timestamp": isoformat(utc_now())})
        return

    if not message.room:
        await hub.send_to(client_id, "error", {"message": f"{message.action} requires a room"})
        return

    if message.action == "subscribe":
        hub.join(client_id, message.room)
        await hub.send_to(client_id, "subscribed", {"room": message.room})
    else:
        hub.leave(client_id, message.room)
        await hub.send_to(client_id, "unsubscribed", {"room": message.room})


@router.websocket("/ws")
async def dashboard_socket(websocket: WebSocket):
    hub: WebSocketHub = websocket.app.state.hub
    receiver = getattr(websocket.app.state, "receiver", None)
    if receiver is None:
        await websocket.close(code=1013)
        return

    client_id = await hub.connect(websocket)
    try:
        await _send_initial_data(hub, client_id, receiver)
        while True:
            raw = await websocket.receive_text()
            await _handle_client_message(hub, client_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(client_id)
