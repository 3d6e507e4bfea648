"""Consultas de estado para el dashboard (solo lectura)."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..mqtt.receiver import FloodReceiver
from ..schemas import (
    DeviceStatusSummary,
    FloodSummary,
    FloodWarning,
    LatestReadingOut,
    StatusHistoryPage,
)
from .deps import get_flood_receiver

router = APIRouter(tags=["status"])


@router.get("/flood/summary", response_model=FloodSummary)
def flood_summary(receiver: FloodReceiver = Depends(get_flood_receiver)):
    return receiver.locations.flood_summary()


@router.get("/flood/warnings", response_model=List[FloodWarning])
def flood_warnings(receiver: FloodReceiver = Depends(get_flood_receiver)):
    """Ubicaciones fuera de AMAN, BAHAYA primero y luego la más reciente."""
    return receiver.locations.active_flood_warnings()


@router.get("/flood/history", response_model=StatusHistoryPage)
def flood_history(
    page: int = Query(1),
    limit: int = Query(10),
    status: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None, alias="startDate"),
    end: Optional[datetime] = Query(None, alias="endDate"),
    sort_by: str = Query("changedAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    receiver: FloodReceiver = Depends(get_flood_receiver),
):
    """Historial paginado de transiciones.

    Parámetros fuera de rango caen a sus defaults en vez de responder 422.
    """
    return receiver.locations.status_history(
        page=page,
        limit=limit,
        status=status,
        start=start,
        end=end,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/locations/{location_id}/thresholds")
def location_thresholds(
    location_id: int,
    water_level: Optional[float] = Query(None, alias="waterLevel"),
    receiver: FloodReceiver = Depends(get_flood_receiver),
):
    return receiver.locations.threshold_info(location_id, water_level)


@router.get("/devices/summary", response_model=DeviceStatusSummary)
def devices_summary(receiver: FloodReceiver = Depends(get_flood_receiver)):
    return receiver.directory.status_summary()


@router.get("/devices/{code}/latest", response_model=LatestReadingOut)
def device_latest(code: str, receiver: FloodReceiver = Depends(get_flood_receiver)):
    """Última lectura del dispositivo: cache en memoria y, si no está, la base."""
    cached = receiver.cache.get(code)
    if cached is not None:
        return {**cached.to_dict(), "source": "cache"}

    log = receiver.sensor_logs.latest(code)
    if log is None:
        raise HTTPException(status_code=404, detail=f"No readings for device {code}")
    return {
        "deviceCode": log.device_code,
        "waterLevel": log.water_level,
        "rainfall": log.rainfall,
        "timestamp": log.timestamp,
        "source": "store",
    }
