"""Pydantic schemas for Google OAuth credentials and Calendar sync results."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class OAuthTokens(BaseModel):
    """Tokens issued by Google on consent or refresh.

    ``refresh_token`` is only present when Google issues a new one; callers
    must keep the stored value when it is None. ``expiry`` is timezone-aware.
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None


class StoredCredential(BaseModel):
    """A user's Google credential as held on the users row."""

    user_id: uuid.UUID
    email: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expiry: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token)

    @property
    def is_usable(self) -> bool:
        return bool(self.access_token or self.refresh_token)


class ConferenceIssue(str, Enum):
    """Why a calendar sync produced less than a full result."""

    NOT_CONFIGURED = "not_configured"
    NOT_CONNECTED = "not_connected"
    PROVIDER_ERROR = "provider_error"
    LINK_PENDING = "link_pending"


class ConferenceResult(BaseModel):
    """Outcome of creating a calendar event with a Meet conference.

    ``ok`` is True only when both the event and its join link exist. A
    degraded result still carries ``external_event_id`` when the event was
    created but the link never appeared (reason ``link_pending``).
    """

    ok: bool
    join_link: str | None = None
    external_event_id: str | None = None
    reason: ConferenceIssue | None = None

    @classmethod
    def degraded(
        cls, reason: ConferenceIssue, external_event_id: str | None = None
    ) -> ConferenceResult:
        return cls(ok=False, external_event_id=external_event_id, reason=reason)
