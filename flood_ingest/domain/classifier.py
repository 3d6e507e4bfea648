"""Clasificación de nivel de agua en estado de inundación.

Función pura: mismo (nivel, bandas) → mismo estado. Orden de evaluación
BAHAYA → SIAGA → WASPADA → AMAN; un valor en un hueco entre bandas cae
en AMAN.
"""

from __future__ import annotations

import math
from typing import Optional

from ..errors import InvalidArgumentError
from .models import FloodStatus, ThresholdBands


def _require_finite(water_level: float) -> float:
    if isinstance(water_level, bool) or not isinstance(water_level, (int, float)):
        raise InvalidArgumentError(f"Water level must be numeric, got {water_level!r}")
    if not math.isfinite(water_level):
        raise InvalidArgumentError(f"Water level must be finite, got {water_level!r}")
    return float(water_level)


def classify(water_level: float, bands: ThresholdBands) -> FloodStatus:
    """Clasifica un nivel de agua contra las bandas de la ubicación.

    Raises:
        InvalidArgumentError: si el nivel no es un número finito
    """
    level = _require_finite(water_level)

    if level >= bands.bahaya_min:
        return FloodStatus.BAHAYA
    if bands.siaga_min <= level <= bands.siaga_max:
        return FloodStatus.SIAGA
    if bands.waspada_min <= level <= bands.waspada_max:
        return FloodStatus.WASPADA
    if level <= bands.aman_max:
        return FloodStatus.AMAN
    # Hueco entre bandas (p.ej. amanMax < nivel < waspadaMin)
    return FloodStatus.AMAN


_NEXT_THRESHOLD = {
    FloodStatus.AMAN: (FloodStatus.WASPADA, "waspada_min"),
    FloodStatus.WASPADA: (FloodStatus.SIAGA, "siaga_min"),
    FloodStatus.SIAGA: (FloodStatus.BAHAYA, "bahaya_min"),
}


def threshold_info(water_level: float, bands: ThresholdBands) -> dict:
    """Estado actual, siguiente umbral y progreso (%) hacia él."""
    status = classify(water_level, bands)
    level = float(water_level)

    next_name: Optional[FloodStatus] = None
    next_value: Optional[float] = None
    progress = 100.0

    if status in _NEXT_THRESHOLD:
        next_name, attr = _NEXT_THRESHOLD[status]
        next_value = getattr(bands, attr)
        floor = {
            FloodStatus.AMAN: 0.0,
            FloodStatus.WASPADA: bands.waspada_min,
            FloodStatus.SIAGA: bands.siaga_min,
        }[status]
        span = next_value - floor
        progress = ((level - floor) / span) * 100 if span > 0 else 100.0

    return {
        "currentStatus": status.value,
        "nextThreshold": next_value,
        "nextThresholdName": next_name.value if next_name else None,
        "progressToNext": max(0.0, min(progress, 100.0)),
        "thresholds": bands.to_dict(),
    }
