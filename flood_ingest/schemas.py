from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FloodSummary(BaseModel):
    total: int
    aman: int
    waspada: int
    siaga: int
    bahaya: int
    flooding: int


class DeviceStatusSummary(BaseModel):
    total: int
    connected: int
    disconnected: int


class LatestReadingOut(_CamelModel):
    device_code: str = Field(..., alias="deviceCode")
    water_level: Optional[float] = Field(None, alias="waterLevel")
    rainfall: Optional[float] = None
    timestamp: datetime
    source: Literal["cache", "store"]


class FloodWarning(_CamelModel):
    id: int
    name: str
    current_status: str = Field(..., alias="currentStatus")
    current_water_level: Optional[float] = Field(None, alias="currentWaterLevel")
    current_rainfall: Optional[float] = Field(None, alias="currentRainfall")
    last_update: Optional[datetime] = Field(None, alias="lastUpdate")
    bahaya_min: float = Field(..., alias="bahayaMin")
    time_since_update: str = Field(..., alias="timeSinceUpdate")
    status_color: str = Field(..., alias="statusColor")
    progress_percentage: float = Field(..., alias="progressPercentage")


class Pagination(_CamelModel):
    current_page: int = Field(..., alias="currentPage")
    total_pages: int = Field(..., alias="totalPages")
    total_items: int = Field(..., alias="totalItems")
    items_per_page: int = Field(..., alias="itemsPerPage")
    has_next_page: bool = Field(..., alias="hasNextPage")
    has_prev_page: bool = Field(..., alias="hasPrevPage")


class StatusHistoryPage(BaseModel):
    data: List[dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination


class ClientAction(BaseModel):
    """Mensaje entrante de un dashboard por el WebSocket."""

    action: Literal["subscribe", "unsubscribe", "ping"]
    room: Optional[str] = Field(None, min_length=1, max_length=128)
