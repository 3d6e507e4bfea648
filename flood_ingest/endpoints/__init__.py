"""Módulo de endpoints HTTP y WebSocket del dashboard."""

from .health import router as health_router
from .status import router as status_router
from .websocket import router as websocket_router

__all__ = [
    "health_router",
    "status_router",
    "websocket_router",
]
