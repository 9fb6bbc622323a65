"""Tenant context propagation via Python contextvars.

This module is the foundation of multi-tenant isolation. The TenantContext
is set by middleware at the start of each request and is accessible anywhere
in the call stack via get_current_tenant(). Every database query and Redis
operation uses this context to scope operations to the correct tenant.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    tenant_id: str
    tenant_slug: str
    schema_name: str  # e.g., "tenant_acme"

    @classmethod
    def from_slug(cls, tenant_id: str, tenant_slug: str) -> TenantContext:
        """Build a context using the tenant_<slug> schema naming convention."""
        return cls(
            tenant_id=tenant_id,
            tenant_slug=tenant_slug,
            schema_name=f"tenant_{tenant_slug.replace('-', '_')}",
        )


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    """Restore the tenant context that was active before set_tenant_context()."""
    _tenant_context.reset(token)


# ── Paths that skip tenant resolution ───────────────────────────────────────

# The OAuth callback is a browser redirect from Google with no auth headers;
# it recovers the tenant from the signed state parameter instead.
SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/v1/auth/google/callback",
)
