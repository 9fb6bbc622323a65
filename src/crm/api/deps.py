"""FastAPI dependency injection for tenant-scoped resources and authentication.

These dependencies are used in endpoint function signatures to inject
the correct tenant context, database session, and authenticated user.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.core.database import get_tenant_session
from src.crm.core.security import verify_token
from src.crm.core.tenant import TenantContext, get_current_tenant
from src.crm.models.tenant import User


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantAuthMiddleware)."""
    return get_current_tenant()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a tenant-scoped database session."""
    async for session in get_tenant_session():
        yield session


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from the Bearer JWT.

    Also records the user id on the connection (app.current_user_id) so
    row-level policies can limit writes on the users table to the caller.

    Raises:
        HTTPException(401): If no valid authentication is provided.
        HTTPException(403): If the token's tenant doesn't match the request tenant.
    """
    tenant = get_current_tenant()

    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    user_id = payload.get("sub")
    token_tenant_id = payload.get("tenant_id")

    if token_tenant_id and token_tenant_id != tenant.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token tenant does not match request tenant context",
        )

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.tenant_id == tenant.tenant_id,
            User.is_active == True,  # noqa: E712
        )
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    await db.execute(
        text("SELECT set_config('app.current_user_id', :uid, false)"),
        {"uid": str(user.id)},
    )
    return user

