"""Dependencias compartidas por los endpoints."""

from __future__ import annotations

from fastapi import HTTPException, Request

from ..mqtt.receiver import FloodReceiver


def get_flood_receiver(request: Request) -> FloodReceiver:
    receiver = getattr(request.app.state, "receiver", None)
    if receiver is None:
        raise HTTPException(status_code=503, detail="service not ready")
    return receiver
