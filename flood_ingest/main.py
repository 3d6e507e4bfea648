from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import dispose_engine

from .endpoints import health_router, status_router, websocket_router
from .errors import (
    ConflictError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from .monitoring.logging_setup import configure_logging
from .mqtt.receiver import start_receiver, stop_receiver
from .realtime.hub import WebSocketHub

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (TransientStoreError, 503),
)


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or get_settings()
        configure_logging(resolved.log_level)
        app.state.hub.bind_loop(asyncio.get_running_loop())

        # connect() de MQTT espera hasta unos segundos el CONNACK
        app.state.receiver = await run_in_threadpool(
            start_receiver, resolved, engine=engine, hub=app.state.hub
        )
        logger.info("[API] Started mqtt_enabled=%s", resolved.mqtt_enabled)
        try:
            yield
        finally:
            await run_in_threadpool(stop_receiver)
            app.state.receiver = None
            if engine is None:
                dispose_engine()

    app = FastAPI(title="Flood Ingest Service", version="0.1.0", lifespan=lifespan)
    app.state.hub = WebSocketHub()
    app.state.receiver = None

    app.include_router(health_router)
    app.include_router(status_router)
    app.include_router(websocket_router)

    @app.exception_handler(NotFoundError)
    @app.exception_handler(ValidationError)
    @app.exception_handler(ConflictError)
    @app.exception_handler(TransientStoreError)
    async def domain_error_handler(request: Request, exc: Exception):
        for error_type, status_code in _ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code = 500
        if status_code == 503:
            logger.warning("[API] Store unavailable path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return app


app = create_app()
