"""Tests for the Google Calendar connect flow and OAuth state tokens.

The token exchange is patched; the consent URL is built by
google-auth-oauthlib locally, so no request leaves the process.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient

from src.crm.api.deps import get_current_user, get_tenant
from src.crm.api.errors import register_exception_handlers
from src.crm.core.security import create_access_token, create_oauth_state_token, verify_token
from src.crm.services.gsuite.models import OAuthTokens
from src.crm.services.gsuite.oauth import OAuthClientConfig

OAUTH = OAuthClientConfig(
    client_id="client-id.apps.googleusercontent.com",
    client_secret="client-secret",
    redirect_uri="http://localhost:8000/api/v1/auth/google/callback",
)

APP_URL = "http://localhost:3000"


def _make_mock_app(tenant, user, store, oauth_config=OAUTH) -> FastAPI:
    from src.crm.api.v1 import google_oauth

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(google_oauth.router, prefix="/api/v1")
    app.state.oauth_config = oauth_config
    app.state.credential_store = store
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_tenant] = lambda: tenant
    return app


@pytest.fixture
def store():
    credential_store = MagicMock()
    credential_store.save = AsyncMock()
    credential_store.is_connected = AsyncMock(return_value=False)
    return credential_store


@pytest_asyncio.fixture
async def client(tenant, organizer, store):
    app = _make_mock_app(tenant, organizer, store)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _state(tenant, user_id, redirect_to="/meetings/calendar") -> str:
    return create_oauth_state_token(
        user_id=str(user_id),
        tenant_id=tenant.tenant_id,
        tenant_slug=tenant.tenant_slug,
        redirect_to=redirect_to,
    )


# ── Consent redirect ─────────────────────────────────────────────────────────


class TestStartOAuth:
    async def test_redirects_to_consent_screen(self, client, tenant, organizer):
        response = await client.get("/api/v1/auth/google", params={"redirectTo": "/meetings/42"})

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "accounts.google.com"
        query = parse_qs(location.query)
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["client_id"] == [OAUTH.client_id]
        assert "https://www.googleapis.com/auth/calendar.events" in query["scope"][0]

        claims = verify_token(query["state"][0], token_type="oauth_state")
        assert claims["sub"] == str(organizer.id)
        assert claims["tenant_id"] == tenant.tenant_id
        assert claims["redirect_to"] == "/meetings/42"

    async def test_offsite_return_path_is_replaced(self, client):
        response = await client.get(
            "/api/v1/auth/google", params={"redirectTo": "//evil.example/phish"}
        )
        state = parse_qs(urlparse(response.headers["location"]).query)["state"][0]
        assert verify_token(state, token_type="oauth_state")["redirect_to"] == "/meetings"

    async def test_unconfigured_client_is_503(self, tenant, organizer, store):
        app = _make_mock_app(tenant, organizer, store, oauth_config=OAuthClientConfig("", "", ""))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/api/v1/auth/google")
        assert response.status_code == 503
        assert response.json() == {"error": "Google Calendar integration is not configured"}


# ── Callback ─────────────────────────────────────────────────────────────────


class TestCallback:
    async def test_success_stores_tokens_and_redirects(self, client, store, tenant, organizer):
        tokens = OAuthTokens(
            access_token="ya29.token",
            refresh_token="1//refresh",
            expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        )
        with patch(
            "src.crm.api.v1.google_oauth.exchange_code", AsyncMock(return_value=tokens)
        ) as mock_exchange:
            response = await client.get(
                "/api/v1/auth/google/callback",
                params={"code": "4/auth-code", "state": _state(tenant, organizer.id)},
            )

        assert response.status_code == 302
        assert response.headers["location"] == f"{APP_URL}/meetings/calendar"
        assert mock_exchange.await_args.args[1] == "4/auth-code"
        store.save.assert_awaited_once_with(organizer.id, tokens)

    async def test_denied_consent(self, client, store):
        response = await client.get(
            "/api/v1/auth/google/callback", params={"error": "access_denied"}
        )
        assert response.status_code == 302
        assert response.headers["location"] == f"{APP_URL}/meetings?error=auth_failed"
        store.save.assert_not_awaited()

    async def test_missing_code(self, client):
        response = await client.get("/api/v1/auth/google/callback", params={"state": "x"})
        assert response.headers["location"] == f"{APP_URL}/meetings?error=no_code"

    async def test_forged_state(self, client, store, tenant, organizer):
        access = create_access_token(
            {"sub": str(organizer.id), "tenant_id": tenant.tenant_id, "tenant_slug": "acme"}
        )
        for state in ("not-a-jwt", access):
            response = await client.get(
                "/api/v1/auth/google/callback", params={"code": "c", "state": state}
            )
            assert response.headers["location"] == f"{APP_URL}/meetings?error=auth_failed"
        store.save.assert_not_awaited()

    async def test_rejected_code(self, client, store, tenant, organizer):
        with patch(
            "src.crm.api.v1.google_oauth.exchange_code",
            AsyncMock(side_effect=ValueError("invalid_grant")),
        ):
            response = await client.get(
                "/api/v1/auth/google/callback",
                params={"code": "bad", "state": _state(tenant, organizer.id)},
            )
        assert response.headers["location"] == f"{APP_URL}/meetings?error=auth_failed"
        store.save.assert_not_awaited()


# ── Status ───────────────────────────────────────────────────────────────────


class TestStatus:
    @pytest.mark.parametrize("connected", [True, False])
    async def test_reports_connection(self, client, store, organizer, connected):
        store.is_connected.return_value = connected
        response = await client.get("/api/v1/auth/google/status")

        assert response.status_code == 200
        assert response.json() == {"data": {"is_connected": connected}}
        store.is_connected.assert_awaited_once_with(organizer.id)


# ── State tokens ─────────────────────────────────────────────────────────────


class TestStateToken:
    def test_state_token_is_not_an_access_token(self, tenant):
        state = _state(tenant, uuid.uuid4())
        with pytest.raises(HTTPException) as exc_info:
            verify_token(state, token_type="access")
        assert exc_info.value.status_code == 401

    def test_tampered_state_rejected(self, tenant):
        state = _state(tenant, uuid.uuid4())
        with pytest.raises(HTTPException):
            verify_token(state[:-4] + "AAAA", token_type="oauth_state")
