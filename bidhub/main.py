"""BidHub API -- Main Application Entry Point

Creates the FastAPI application, configures logging and CORS, registers
the error-envelope exception handlers and the API routers under the
/api/v1 prefix, and mounts the Socket.IO ASGI application for realtime
chat.

Run with::

    uvicorn bidhub.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from bidhub.api.routes import bids, chat
from bidhub.core.config import Settings, settings as default_settings
from bidhub.core.database import Database
from bidhub.core.exceptions import AppError
from bidhub.realtime.broadcaster import Broadcaster, ConnectionRegistry, SocketBroadcaster
from bidhub.realtime.socketServer import (
    RealtimeGateway,
    create_socket_app,
    create_socket_server,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    elif exc.status_code in (401, 403):
        logger.warning("%s %s denied: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = _error(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return _error(400, "; ".join(details) or "Invalid request")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    app_settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    broadcaster: Optional[Broadcaster] = None,
    sio: Optional[socketio.AsyncServer] = None,
) -> FastAPI:
    """Build the application.

    ``database``, ``broadcaster`` and ``sio`` default to instances built
    from ``app_settings``; tests pass their own.  Exactly one broadcaster
    is shared by the REST dependencies and the Socket.IO gateway.
    """
    app_settings = app_settings or default_settings
    database = database or Database.from_settings(app_settings)
    sio = sio or create_socket_server(app_settings)
    broadcaster = broadcaster or SocketBroadcaster(sio)
    registry = (
        broadcaster.registry
        if isinstance(broadcaster, SocketBroadcaster)
        else ConnectionRegistry()
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: nothing to warm up; the pool connects lazily.

        Shutdown: dispose of the engine so pooled connections close.
        """
        logger.info("%s %s starting", app_settings.app_name, app_settings.app_version)
        yield
        await database.dispose()

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        debug=app_settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.database = database
    app.state.broadcaster = broadcaster
    app.state.sio = sio

    # -- CORS --
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Error envelope --
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # -- Health check --
    @app.get("/health", tags=["Health"])
    async def health():
        """Lightweight health check for load balancers and readiness probes."""
        return {"status": "ok", "version": app_settings.app_version}

    # -- API routers --
    app.include_router(bids.router, prefix=app_settings.api_v1_prefix)
    app.include_router(chat.router, prefix=app_settings.api_v1_prefix)

    # -- Socket.IO --
    RealtimeGateway(sio, database, broadcaster, registry).register()
    app.mount("/ws", create_socket_app(sio))

    return app


logging.basicConfig(
    level=getattr(logging, default_settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = create_app()
