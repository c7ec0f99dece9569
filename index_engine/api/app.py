"""API application factory."""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from index_engine.cache.client import CacheClient
from index_engine.core.config import settings
from index_engine.core.exceptions import register_exception_handlers
from index_engine.core.logging import get_logger, request_id_var
from index_engine.database.connection import Database
from index_engine.engine.context import EngineContext
from index_engine.schemas.common import ErrorResponse
from index_engine.services.container import build_context

from .routes import admin_indices, cron, health


logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database engine and cache pool; build the engine context."""
    if getattr(app.state, "engine", None) is not None:
        # Context injected by the caller (tests)
        yield
        return

    database = Database.from_settings(settings)
    cache = CacheClient.from_settings(settings)
    try:
        await database.connect()
        await cache.connect()
    except Exception as e:
        logger.warning(f"Resource initialization failed: {e}")

    app.state.database = database
    app.state.cache = cache
    app.state.engine = build_context(database, settings)

    yield

    try:
        await cache.disconnect()
        await database.dispose()
    except Exception as e:
        logger.warning(f"Resource cleanup failed: {e}")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add request ID to all requests for tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request_id_var.set(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start_time

        # Path only; query strings may carry secrets
        path = request.url.path
        logger.info(
            f"{request.method} {path} -> {response.status_code} ({duration:.3f}s)",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": int(duration * 1000),
            },
        )
        return response


def create_api_app(
    engine: Optional[EngineContext] = None, cache: Optional[CacheClient] = None
) -> FastAPI:
    """Create and configure the API application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Theoretical index computation service",
        root_path=settings.root_path,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse, "description": "Bad Request"},
            401: {"model": ErrorResponse, "description": "Unauthorized"},
            404: {"model": ErrorResponse, "description": "Not Found"},
            422: {"model": ErrorResponse, "description": "Validation Error"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
        },
    )
    if engine is not None:
        app.state.engine = engine
        app.state.cache = cache

    # First added is outermost
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(cron.router, prefix="/cron", tags=["Cron"])
    app.include_router(admin_indices.router, prefix="/admin/indices", tags=["Admin Indices"])

    return app
