"""Domain layer - Modelos y clasificador de umbrales."""

from .classifier import classify, threshold_info
from .models import (
    Device,
    DeviceStatus,
    FloodStatus,
    Location,
    LocationStatusHistory,
    SensorLog,
    SensorStatistics,
    StatusProcessingResult,
    ThresholdBands,
)

__all__ = [
    "classify",
    "threshold_info",
    "Device",
    "DeviceStatus",
    "FloodStatus",
    "Location",
    "LocationStatusHistory",
    "SensorLog",
    "SensorStatistics",
    "StatusProcessingResult",
    "ThresholdBands",
]
