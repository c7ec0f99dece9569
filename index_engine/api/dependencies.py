"""API dependencies for operator authentication and engine access."""

from __future__ import annotations

import hmac

from fastapi import Header, Request

from index_engine.cache.client import CacheClient
from index_engine.core.config import get_settings
from index_engine.core.exceptions import AuthenticationError
from index_engine.engine.context import EngineContext
from index_engine.services.admin import AdminService


def _extract_token(authorization: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return token
    return None


async def require_operator(authorization: str | None = Header(default=None)) -> None:
    """
    Require the bearer token configured as ``CRON_SECRET``.

    An empty secret disables the check (local development).
    """
    secret = get_settings().cron_secret
    if not secret:
        return
    token = _extract_token(authorization)
    if not token:
        raise AuthenticationError(message="Authentication required", error_code="MISSING_CREDENTIALS")
    if not hmac.compare_digest(token, secret):
        raise AuthenticationError(message="Invalid token", error_code="INVALID_TOKEN")


def get_engine_context(request: Request) -> EngineContext:
    return request.app.state.engine


def get_cache(request: Request) -> CacheClient | None:
    return getattr(request.app.state, "cache", None)


def get_admin_service(request: Request) -> AdminService:
    return AdminService(get_engine_context(request))
