"""Authenticated Google Calendar clients built from stored user credentials.

TokenManager turns a user's stored OAuth tokens into a Calendar API v3
resource. Tokens that expire within the refresh margin are refreshed
before the client is handed out, and every later refresh performed by
google-auth while the client is in use is written back through the
injected ``persist`` callable.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from src.crm.core.monitoring import record_calendar_sync
from src.crm.services.gsuite.credentials import CredentialStore
from src.crm.services.gsuite.models import OAuthTokens, StoredCredential
from src.crm.services.gsuite.oauth import (
    CALENDAR_SCOPES,
    OAuthClientConfig,
    to_aware_utc,
    to_naive_utc,
)

logger = structlog.get_logger(__name__)

PersistTokens = Callable[[uuid.UUID, OAuthTokens], Awaitable[None]]

DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)


class PersistingCredentials(Credentials):
    """google-auth user credentials that report every successful refresh.

    ``on_refresh`` is called with the credentials after google-auth has
    replaced the token, from whichever thread performed the refresh.
    """

    on_refresh: Callable[[Credentials], None] | None = None

    def refresh(self, request: Any) -> None:
        super().refresh(request)
        if self.on_refresh is not None:
            self.on_refresh(self)


def tokens_from_credentials(credentials: Credentials) -> OAuthTokens:
    return OAuthTokens(
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
        expiry=to_aware_utc(credentials.expiry),
    )


class TokenManager:
    """Hands out Calendar clients for users who connected Google Calendar.

    Args:
        credential_store: Source of stored tokens.
        oauth_config: The CRM's OAuth client, needed to refresh tokens.
        persist: Async callable receiving rotated tokens. Defaults to
            ``credential_store.save``.
        refresh_margin: Refresh proactively when the token expires sooner
            than this.
        service_builder: googleapiclient ``build`` (swapped out in tests).
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        oauth_config: OAuthClientConfig,
        persist: PersistTokens | None = None,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        service_builder: Callable[..., Any] = build,
    ) -> None:
        self._store = credential_store
        self._oauth = oauth_config
        self._persist = persist or credential_store.save
        self._refresh_margin = refresh_margin
        self._build = service_builder

    @property
    def is_configured(self) -> bool:
        return self._oauth.is_configured

    def _needs_refresh(self, stored: StoredCredential, now: datetime) -> bool:
        if not stored.access_token:
            return True
        if stored.expiry is None:
            return False
        return stored.expiry - now < self._refresh_margin

    def _build_credentials(self, stored: StoredCredential) -> PersistingCredentials:
        return PersistingCredentials(
            token=stored.access_token,
            refresh_token=stored.refresh_token,
            token_uri=self._oauth.token_uri,
            client_id=self._oauth.client_id,
            client_secret=self._oauth.client_secret,
            scopes=CALENDAR_SCOPES,
            expiry=to_naive_utc(stored.expiry),
        )

    def _persist_in_background(
        self, user_id: uuid.UUID, loop: asyncio.AbstractEventLoop
    ) -> Callable[[Credentials], None]:
        """Refresh hook that schedules persistence on the request's event loop.

        google-auth refreshes synchronously inside API calls that run in
        worker threads, so the write is handed back to the loop.
        """

        def _log_outcome(future: Any) -> None:
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "google_token_persist_failed",
                    user_id=str(user_id),
                    error=str(exc),
                )

        def hook(credentials: Credentials) -> None:
            logger.info("google_token_rotated", user_id=str(user_id))
            record_calendar_sync("refresh", "success")
            future = asyncio.run_coroutine_threadsafe(
                self._persist(user_id, tokens_from_credentials(credentials)),
                loop,
            )
            future.add_done_callback(_log_outcome)

        return hook

    async def _refresh(self, stored: StoredCredential, credentials: Credentials) -> bool:
        if not stored.refresh_token:
            logger.warning("google_token_refresh_skipped", user_id=str(stored.user_id))
            return False
        try:
            await asyncio.to_thread(credentials.refresh, Request())
        except GoogleAuthError as exc:
            record_calendar_sync("refresh", "failure")
            logger.warning(
                "google_token_refresh_failed",
                user_id=str(stored.user_id),
                error=str(exc),
            )
            return False

        record_calendar_sync("refresh", "success")
        logger.info("google_token_refreshed", user_id=str(stored.user_id))
        try:
            await self._persist(stored.user_id, tokens_from_credentials(credentials))
        except Exception:
            # The refreshed token stays usable for this request
            logger.exception("google_token_persist_failed", user_id=str(stored.user_id))
        return True

    async def get_credentials(self, user_id: uuid.UUID) -> Credentials | None:
        """Live credentials for the user, or None if the user is not connected.

        A failed proactive refresh falls back to the stored access token;
        only when there is no access token at all does it yield None.
        """
        stored = await self._store.get(user_id)
        if stored is None or not stored.is_usable:
            return None

        credentials = self._build_credentials(stored)
        if self._needs_refresh(stored, datetime.now(timezone.utc)):
            refreshed = await self._refresh(stored, credentials)
            if not refreshed and not stored.access_token:
                return None

        credentials.on_refresh = self._persist_in_background(
            user_id, asyncio.get_running_loop()
        )
        return credentials

    async def get_calendar_client(self, user_id: uuid.UUID) -> Any | None:
        """Calendar API v3 resource for the user, or None if not connected."""
        credentials = await self.get_credentials(user_id)
        if credentials is None:
            return None
        logger.info("building_calendar_service", user_id=str(user_id))
        return self._build("calendar", "v3", credentials=credentials, cache_discovery=False)
