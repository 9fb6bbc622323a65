"""Google Calendar event sync with Google Meet conferencing.

ConferenceProvisioner mirrors CRM meetings into the organizer's primary
calendar. Event creation asks Google to allocate a Meet room; the join
link is provisioned asynchronously, so the event is re-read a few times
with a growing delay until the link shows up.

Every method here is best-effort: provider failures are logged and
reported through the return value, never raised, so a calendar outage
cannot block the local meeting write that triggered the sync.

All Google API calls are wrapped in asyncio.to_thread() to avoid
blocking the event loop.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from src.crm.core.monitoring import meet_link_poll_attempts, record_calendar_sync
from src.crm.services.gsuite.models import ConferenceIssue, ConferenceResult
from src.crm.services.gsuite.token_manager import TokenManager

logger = structlog.get_logger(__name__)

REMINDER_MINUTES = 5


def extract_join_link(event: dict) -> str | None:
    """Return the Meet URL of an event, if Google has provisioned one.

    Prefers ``hangoutLink`` and falls back to the first video entry point
    in conferenceData.
    """
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    conference = event.get("conferenceData", {})
    for ep in conference.get("entryPoints", []):
        if ep.get("entryPointType") == "video" and ep.get("uri"):
            return ep["uri"]
    return None


def _event_time(value: str, timezone: str) -> dict:
    return {"dateTime": value, "timeZone": timezone}


class ConferenceProvisioner:
    """Create, patch and delete calendar events on behalf of an organizer.

    Args:
        token_manager: Supplies an authenticated Calendar client per user.
        calendar_id: Target calendar, normally ``primary``.
        default_timezone: Used when a patch moves the event without a zone.
        max_link_polls: Number of re-reads while waiting for the Meet link.
        poll_base_seconds: Poll n waits ``n * poll_base_seconds``.
        sleep: Awaitable sleep (replaced in tests).
    """

    def __init__(
        self,
        token_manager: TokenManager,
        calendar_id: str = "primary",
        default_timezone: str = "Asia/Kolkata",
        max_link_polls: int = 3,
        poll_base_seconds: float = 1.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._tokens = token_manager
        self._calendar_id = calendar_id
        self._default_timezone = default_timezone
        self._max_link_polls = max_link_polls
        self._poll_base_seconds = poll_base_seconds
        self._sleep = sleep

    async def _client_for(
        self, user_id: uuid.UUID, operation: str
    ) -> tuple[Any | None, ConferenceIssue | None]:
        """Calendar client for the organizer, or None and the reason why not."""
        if not self._tokens.is_configured:
            logger.info("calendar_sync_not_configured", operation=operation)
            record_calendar_sync(operation, ConferenceIssue.NOT_CONFIGURED.value)
            return None, ConferenceIssue.NOT_CONFIGURED
        try:
            client = await self._tokens.get_calendar_client(user_id)
        except Exception:
            logger.exception(
                "calendar_client_unavailable",
                operation=operation,
                user_id=str(user_id),
            )
            record_calendar_sync(operation, ConferenceIssue.PROVIDER_ERROR.value)
            return None, ConferenceIssue.PROVIDER_ERROR
        if client is None:
            logger.info(
                "calendar_sync_not_connected",
                operation=operation,
                user_id=str(user_id),
            )
            record_calendar_sync(operation, ConferenceIssue.NOT_CONNECTED.value)
            return None, ConferenceIssue.NOT_CONNECTED
        return client, None

    def _build_event_body(
        self,
        title: str,
        description: str | None,
        start: str,
        end: str,
        timezone: str,
        attendees: Sequence[str],
    ) -> dict:
        return {
            "summary": title,
            "description": description or "",
            "start": _event_time(start, timezone),
            "end": _event_time(end, timezone),
            "attendees": [{"email": email} for email in attendees],
            "conferenceData": {
                "createRequest": {
                    "requestId": f"meet-{uuid.uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": REMINDER_MINUTES},
                    {"method": "popup", "minutes": REMINDER_MINUTES},
                ],
            },
        }

    async def _poll_for_link(self, client: Any, event_id: str) -> tuple[str | None, int]:
        """Re-read the event until a join link appears or polls run out.

        Returns the link (or None) and the number of polls made.
        """
        for attempt in range(1, self._max_link_polls + 1):
            await self._sleep(self._poll_base_seconds * attempt)
            try:
                event = await asyncio.to_thread(
                    client.events()
                    .get(calendarId=self._calendar_id, eventId=event_id)
                    .execute
                )
            except Exception:
                logger.warning(
                    "meet_link_poll_failed",
                    event_id=event_id,
                    attempt=attempt,
                    exc_info=True,
                )
                continue
            link = extract_join_link(event)
            if link:
                return link, attempt
        return None, self._max_link_polls

    async def create(
        self,
        user_id: uuid.UUID,
        title: str,
        description: str | None,
        start: str,
        end: str,
        timezone: str,
        attendees: Sequence[str],
    ) -> ConferenceResult:
        """Create a calendar event with a Meet conference.

        Args:
            user_id: Organizer whose calendar receives the event.
            title: Event summary.
            description: Event description (empty string when None).
            start: Offset-qualified ISO start timestamp.
            end: Offset-qualified ISO end timestamp.
            timezone: IANA zone label shown on the event.
            attendees: Emails invited with ``sendUpdates=all``.

        Returns:
            ConferenceResult. Never raises.
        """
        client, issue = await self._client_for(user_id, "create")
        if client is None:
            return ConferenceResult.degraded(issue)

        body = self._build_event_body(title, description, start, end, timezone, attendees)
        try:
            event = await asyncio.to_thread(
                client.events()
                .insert(
                    calendarId=self._calendar_id,
                    body=body,
                    conferenceDataVersion=1,
                    sendUpdates="all",
                )
                .execute
            )
        except Exception:
            logger.exception("calendar_event_create_failed", user_id=str(user_id))
            record_calendar_sync("create", ConferenceIssue.PROVIDER_ERROR.value)
            return ConferenceResult.degraded(ConferenceIssue.PROVIDER_ERROR)

        event_id = event.get("id")
        if not event_id:
            logger.error("calendar_event_missing_id", user_id=str(user_id))
            record_calendar_sync("create", ConferenceIssue.PROVIDER_ERROR.value)
            return ConferenceResult.degraded(ConferenceIssue.PROVIDER_ERROR)

        link = extract_join_link(event)
        polls = 0
        if not link:
            link, polls = await self._poll_for_link(client, event_id)

        if not link:
            logger.warning(
                "meet_link_not_provisioned",
                event_id=event_id,
                polls=polls,
            )
            record_calendar_sync("create", ConferenceIssue.LINK_PENDING.value)
            return ConferenceResult.degraded(
                ConferenceIssue.LINK_PENDING, external_event_id=event_id
            )

        meet_link_poll_attempts.observe(polls)
        record_calendar_sync("create", "success")
        logger.info("calendar_event_created", event_id=event_id, polls=polls)
        return ConferenceResult(ok=True, join_link=link, external_event_id=event_id)

    async def update(
        self,
        user_id: uuid.UUID,
        event_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        start: str | None = None,
        end: str | None = None,
        timezone: str | None = None,
        attendees: Sequence[str] | None = None,
    ) -> bool:
        """Patch the supplied fields of an existing event.

        Returns:
            True if Google accepted the patch, False when the organizer is
            not connected or the provider failed.
        """
        client, _ = await self._client_for(user_id, "update")
        if client is None:
            return False

        zone = timezone or self._default_timezone
        patch: dict = {}
        if title is not None:
            patch["summary"] = title
        if description is not None:
            patch["description"] = description
        if start is not None:
            patch["start"] = _event_time(start, zone)
        if end is not None:
            patch["end"] = _event_time(end, zone)
        if attendees is not None:
            patch["attendees"] = [{"email": email} for email in attendees]

        try:
            await asyncio.to_thread(
                client.events()
                .patch(
                    calendarId=self._calendar_id,
                    eventId=event_id,
                    body=patch,
                    sendUpdates="all",
                )
                .execute
            )
        except Exception:
            logger.exception("calendar_event_update_failed", event_id=event_id)
            record_calendar_sync("update", ConferenceIssue.PROVIDER_ERROR.value)
            return False

        record_calendar_sync("update", "success")
        logger.info("calendar_event_updated", event_id=event_id, fields=sorted(patch))
        return True

    async def delete(self, user_id: uuid.UUID, event_id: str) -> bool:
        """Delete an event and notify its attendees.

        Returns:
            True on success, False when not connected or on provider failure.
        """
        client, _ = await self._client_for(user_id, "delete")
        if client is None:
            return False

        try:
            await asyncio.to_thread(
                client.events()
                .delete(
                    calendarId=self._calendar_id,
                    eventId=event_id,
                    sendUpdates="all",
                )
                .execute
            )
        except Exception:
            logger.exception("calendar_event_delete_failed", event_id=event_id)
            record_calendar_sync("delete", ConferenceIssue.PROVIDER_ERROR.value)
            return False

        record_calendar_sync("delete", "success")
        logger.info("calendar_event_deleted", event_id=event_id)
        return True
