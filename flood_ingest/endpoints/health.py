"""Health, readiness, estadísticas y métricas."""

from fastapi import APIRouter, Depends, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..mqtt.receiver import FloodReceiver
from .deps import get_flood_receiver

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness: responde ok mientras el proceso viva."""
    return {"status": "ok"}


@router.get("/ready")
def ready(receiver: FloodReceiver = Depends(get_flood_receiver)):
    """Readiness: base de datos alcanzable y, si MQTT está habilitado, conectado."""
    status = receiver.health_check()
    if not status["db_connected"]:
        raise HTTPException(status_code=503, detail="not ready")
    if receiver.settings.mqtt_enabled and not status["mqtt_connected"]:
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready", **status}


@router.get("/stats")
def stats(receiver: FloodReceiver = Depends(get_flood_receiver)):
    return receiver.stats


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
