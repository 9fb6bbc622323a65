"""API middleware package."""

from src.crm.api.middleware.logging import LoggingMiddleware
from src.crm.api.middleware.tenant import TenantAuthMiddleware

__all__ = ["LoggingMiddleware", "TenantAuthMiddleware"]
