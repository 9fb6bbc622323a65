"""Google Calendar connection endpoints.

The consent redirect carries a signed state token holding the user,
tenant and post-consent path. Google's callback arrives as a plain
browser redirect with no Authorization header, so the callback path is
exempt from tenant middleware and rebuilds the tenant context from the
state token instead.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from src.crm.api.deps import get_current_user, get_tenant
from src.crm.config import get_settings
from src.crm.core.monitoring import record_calendar_sync
from src.crm.core.security import create_oauth_state_token, verify_token
from src.crm.core.tenant import TenantContext, reset_tenant_context, set_tenant_context
from src.crm.models.tenant import User
from src.crm.services.gsuite.oauth import build_authorization_url, exchange_code

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth/google", tags=["google-calendar"])

DEFAULT_RETURN_PATH = "/meetings"


def _get_oauth_config(request: Request) -> Any:
    """Retrieve OAuthClientConfig from app.state, 503 if Google is not configured."""
    config = getattr(request.app.state, "oauth_config", None)
    if config is None or not config.is_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google Calendar integration is not configured",
        )
    return config


def _get_credential_store(request: Request) -> Any:
    store = getattr(request.app.state, "credential_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credential store not initialized",
        )
    return store


def safe_return_path(path: str | None) -> str:
    """Only same-site relative paths are allowed as post-consent targets."""
    if path and path.startswith("/") and not path.startswith("//"):
        return path
    return DEFAULT_RETURN_PATH


def _app_redirect(path: str) -> RedirectResponse:
    base = get_settings().APP_BASE_URL.rstrip("/")
    return RedirectResponse(url=f"{base}{path}", status_code=status.HTTP_302_FOUND)


@router.get("")
async def start_google_oauth(
    request: Request,
    redirect_to: str | None = Query(default=None, alias="redirectTo"),
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> RedirectResponse:
    """Redirect the browser to Google's consent screen."""
    config = _get_oauth_config(request)
    state = create_oauth_state_token(
        user_id=str(user.id),
        tenant_id=tenant.tenant_id,
        tenant_slug=tenant.tenant_slug,
        redirect_to=safe_return_path(redirect_to),
    )
    logger.info("google_oauth_started", user_id=str(user.id))
    return RedirectResponse(
        url=build_authorization_url(config, state),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/callback")
async def google_oauth_callback(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> RedirectResponse:
    """Exchange the authorization code and store the user's tokens.

    Always answers with a redirect into the CRM; failures add an
    ``error`` query flag instead of an error body.
    """
    if error:
        logger.warning("google_oauth_denied", error=error)
        return _app_redirect(f"{DEFAULT_RETURN_PATH}?error=auth_failed")
    if not code:
        return _app_redirect(f"{DEFAULT_RETURN_PATH}?error=no_code")

    try:
        claims = verify_token(state or "", token_type="oauth_state")
    except HTTPException:
        logger.warning("google_oauth_invalid_state")
        return _app_redirect(f"{DEFAULT_RETURN_PATH}?error=auth_failed")

    config = _get_oauth_config(request)
    store = _get_credential_store(request)
    user_id = uuid.UUID(claims["sub"])

    token = set_tenant_context(
        TenantContext.from_slug(claims["tenant_id"], claims["tenant_slug"])
    )
    try:
        tokens = await exchange_code(config, code)
        await store.save(user_id, tokens)
    except Exception:
        logger.exception("google_oauth_callback_failed", user_id=str(user_id))
        record_calendar_sync("connect", "failure")
        return _app_redirect(f"{DEFAULT_RETURN_PATH}?error=auth_failed")
    finally:
        reset_tenant_context(token)

    record_calendar_sync("connect", "success")
    logger.info("google_calendar_connected", user_id=str(user_id))
    return _app_redirect(safe_return_path(claims.get("redirect_to")))


@router.get("/status")
async def google_oauth_status(
    request: Request,
    user: User = Depends(get_current_user),
) -> dict:
    """Whether the current user has connected Google Calendar."""
    store = _get_credential_store(request)
    return {"data": {"is_connected": await store.is_connected(user.id)}}
