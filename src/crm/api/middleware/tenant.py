"""Tenant resolution middleware with JWT and header-based modes.

Resolves tenant context from:
1. JWT claims in Authorization header (preferred for user requests)
2. X-Tenant-ID header (fallback for service-to-service calls)

After resolution, sets TenantContext in contextvars for the request scope.
Requests that resolve no tenant are answered with 401 and an error body.
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis
import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.crm.config import get_settings
from src.crm.core.database import get_engine
from src.crm.core.tenant import (
    SKIP_TENANT_PATHS,
    TenantContext,
    reset_tenant_context,
    set_tenant_context,
)

logger = structlog.get_logger(__name__)

TENANT_CACHE_TTL_SECONDS = 300


def _cache_key(tenant_id: str) -> str:
    return f"tenant:lookup:{tenant_id}"


class TenantAuthMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves tenant from JWT claims or X-Tenant-ID header.

    Paths in SKIP_TENANT_PATHS are excluded from tenant resolution.
    Tenant lookups are cached in Redis for five minutes when a client is
    supplied.
    """

    def __init__(self, app, redis_client: aioredis.Redis | None = None):
        super().__init__(app)
        self._redis = redis_client

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        tenant_ctx = await self._resolve_from_jwt(request)
        if not tenant_ctx:
            tenant_ctx = await self._resolve_from_header(request)

        if not tenant_ctx:
            return JSONResponse(
                status_code=401,
                content={"error": "Not authenticated"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        token = set_tenant_context(tenant_ctx)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)

    async def _resolve_from_jwt(self, request: Request) -> TenantContext | None:
        """Extract tenant context from JWT claims in Authorization header."""
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None

        settings = get_settings()
        try:
            payload = jwt.decode(
                auth_header[7:],
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
            )
        except JWTError:
            return None

        tenant_id = payload.get("tenant_id")
        tenant_slug = payload.get("tenant_slug")
        if not tenant_id or not tenant_slug:
            return None

        if await self._lookup_tenant(tenant_id) is None:
            return None
        return TenantContext.from_slug(tenant_id, tenant_slug)

    async def _resolve_from_header(self, request: Request) -> TenantContext | None:
        """Resolve tenant from X-Tenant-ID header."""
        tenant_id = request.headers.get("X-Tenant-ID")
        if not tenant_id:
            return None
        return await self._lookup_tenant(tenant_id)

    async def _lookup_tenant(self, tenant_id: str) -> TenantContext | None:
        """Resolve an active tenant by id, using the Redis cache when available."""
        if self._redis:
            try:
                cached = await self._redis.get(_cache_key(tenant_id))
            except aioredis.RedisError:
                logger.warning("tenant_cache_get_failed", tenant_id=tenant_id)
                cached = None
            if cached:
                data = json.loads(cached)
                return TenantContext(
                    tenant_id=data["tenant_id"],
                    tenant_slug=data["tenant_slug"],
                    schema_name=data["schema_name"],
                )

        engine = get_engine()
        async with engine.connect() as conn:
            result = await conn.execute(
                text(
                    "SELECT id, slug, schema_name FROM shared.tenants "
                    "WHERE id::text = :tid AND is_active = true"
                ),
                {"tid": tenant_id},
            )
            row = result.first()
        if not row:
            return None

        ctx = TenantContext(
            tenant_id=str(row.id),
            tenant_slug=row.slug,
            schema_name=row.schema_name,
        )
        if self._redis:
            try:
                await self._redis.set(
                    _cache_key(tenant_id),
                    json.dumps({
                        "tenant_id": ctx.tenant_id,
                        "tenant_slug": ctx.tenant_slug,
                        "schema_name": ctx.schema_name,
                    }),
                    ex=TENANT_CACHE_TTL_SECONDS,
                )
            except aioredis.RedisError:
                logger.warning("tenant_cache_set_failed", tenant_id=tenant_id)
        return ctx
