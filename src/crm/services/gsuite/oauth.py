"""Google OAuth web flow for per-user Calendar access.

OAuthClientConfig is an immutable value built from settings; every flow
and credential object is constructed from it on demand, so no OAuth
client state is shared between requests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from google_auth_oauthlib.flow import Flow

from src.crm.config import Settings
from src.crm.services.gsuite.models import OAuthTokens

logger = structlog.get_logger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


@dataclass(frozen=True)
class OAuthClientConfig:
    """Client id, secret and redirect URI of the CRM's Google OAuth app."""

    client_id: str
    client_secret: str
    redirect_uri: str
    token_uri: str = TOKEN_URI

    @classmethod
    def from_settings(cls, settings: Settings) -> OAuthClientConfig:
        return cls(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            redirect_uri=settings.GOOGLE_REDIRECT_URI,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def as_client_config(self) -> dict[str, Any]:
        """Client config in the shape google-auth-oauthlib expects."""
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }


def to_aware_utc(expiry: datetime | None) -> datetime | None:
    """google-auth reports expiry as naive UTC; the users table stores aware UTC."""
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry.astimezone(timezone.utc)


def to_naive_utc(expiry: datetime | None) -> datetime | None:
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        return expiry
    return expiry.astimezone(timezone.utc).replace(tzinfo=None)


def _build_flow(config: OAuthClientConfig) -> Flow:
    # No PKCE: the consent redirect and the code exchange use separate Flow objects
    return Flow.from_client_config(
        config.as_client_config(),
        scopes=CALENDAR_SCOPES,
        redirect_uri=config.redirect_uri,
        autogenerate_code_verifier=False,
    )


def build_authorization_url(config: OAuthClientConfig, state: str) -> str:
    """Consent screen URL requesting offline Calendar access.

    ``prompt=consent`` makes Google issue a refresh token every time.
    """
    flow = _build_flow(config)
    authorization_url, _ = flow.authorization_url(
        access_type="offline",
        prompt="consent",
        state=state,
    )
    return authorization_url


def _fetch_tokens(config: OAuthClientConfig, code: str) -> OAuthTokens:
    flow = _build_flow(config)
    flow.fetch_token(code=code)
    credentials = flow.credentials
    return OAuthTokens(
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
        expiry=to_aware_utc(credentials.expiry),
    )


async def exchange_code(config: OAuthClientConfig, code: str) -> OAuthTokens:
    """Exchange an authorization code for tokens.

    Raises whatever google-auth-oauthlib raises on a rejected code; the
    callback route turns that into a redirect with an error flag.
    """
    tokens = await asyncio.to_thread(_fetch_tokens, config, code)
    logger.info(
        "google_oauth_code_exchanged",
        has_refresh_token=tokens.refresh_token is not None,
    )
    return tokens
