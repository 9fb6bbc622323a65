"""Meeting lifecycle orchestration.

MeetingCoordinator runs the create, update, delete and RSVP sequences:

    timestamps -> calendar sync -> meeting row -> participants -> notifications

The local meeting record is the source of truth. Calendar sync is
best-effort (ConferenceProvisioner never raises), so a meeting is always
saved even when Google is unavailable or the organizer never connected
their calendar. The steps are not one transaction: a failure after the
meeting insert leaves the meeting with only the organizer on the roster.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

import structlog

from src.crm.meetings import notifications
from src.crm.meetings.errors import (
    InvalidStatusTransitionError,
    MeetingNotFoundError,
    MeetingValidationError,
    ParticipantNotFoundError,
)
from src.crm.meetings.notifications import NotificationSink
from src.crm.meetings.participants import (
    attendee_emails,
    roster_for_create,
    roster_for_update,
    user_ids_to_resolve,
)
from src.crm.meetings.repository import MeetingRepository
from src.crm.meetings.schemas import (
    MeetingCreate,
    MeetingCreateRequest,
    MeetingDetail,
    MeetingStatus,
    MeetingUpdateRequest,
    Participant,
    ParticipantRequest,
    RsvpStatus,
    UserSummary,
)
from src.crm.meetings.timestamps import parse_timestamp, resolve_window, to_wall_clock
from src.crm.services.gsuite.calendar import ConferenceProvisioner
from src.crm.services.gsuite.models import ConferenceResult

logger = structlog.get_logger(__name__)

# Columns a PUT may set directly; None clears only the nullable ones
_NULLABLE_FIELDS = ("description", "location", "lead_id")
_REQUIRED_FIELDS = ("title", "color", "recurrence")


class MeetingCoordinator:
    """Create, update, cancel and RSVP to meetings.

    Args:
        repository: Meeting row store.
        provisioner: Google Calendar sync.
        notifier: Sink for in-app notifications.
        default_timezone: Zone used when a create request names none.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        provisioner: ConferenceProvisioner,
        notifier: NotificationSink,
        default_timezone: str = "Asia/Kolkata",
    ) -> None:
        self._repo = repository
        self._provisioner = provisioner
        self._notifier = notifier
        self._default_timezone = default_timezone

    async def _load(self, tenant_id: str, meeting_id: uuid.UUID) -> MeetingDetail:
        meeting = await self._repo.get_meeting(tenant_id, meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(str(meeting_id))
        return meeting

    async def _resolve_attendees(
        self,
        tenant_id: str,
        organizer_id: uuid.UUID,
        organizer_email: str | None,
        requested: Sequence[ParticipantRequest],
    ) -> list[str]:
        """Attendee emails for the calendar event; rejects unknown user ids."""
        user_ids = user_ids_to_resolve(requested, organizer_id)
        users = await self._repo.get_users(tenant_id, user_ids)
        missing = [str(uid) for uid in user_ids if uid not in users]
        if missing:
            raise MeetingValidationError(f"Unknown participant user id(s): {', '.join(missing)}")
        return attendee_emails(
            requested,
            {uid: u.email for uid, u in users.items()},
            organizer_id,
            organizer_email,
        )

    # ── Create ───────────────────────────────────────────────────────────

    async def create(
        self,
        tenant_id: str,
        organizer: UserSummary,
        request: MeetingCreateRequest,
    ) -> MeetingDetail:
        """Schedule a meeting, optionally with a Google Meet link.

        Returns:
            The saved meeting with organizer and participants. Its
            meeting_link is None when conferencing was not requested or
            could not be provisioned.
        """
        tz = request.timezone or self._default_timezone
        start_iso, end_iso = resolve_window(
            request.start_date, request.start_time, request.end_time, tz
        )
        emails = await self._resolve_attendees(
            tenant_id, organizer.id, organizer.email, request.participants
        )

        conference: ConferenceResult | None = None
        if request.generate_meet_link:
            conference = await self._provisioner.create(
                organizer.id,
                request.title,
                request.description,
                start_iso,
                end_iso,
                tz,
                emails,
            )

        meeting = await self._repo.create_meeting(
            tenant_id,
            MeetingCreate(
                title=request.title,
                description=request.description,
                organizer_id=organizer.id,
                start_time=parse_timestamp(start_iso),
                end_time=parse_timestamp(end_iso),
                timezone=tz,
                location=request.location,
                meeting_link=conference.join_link if conference else None,
                calendar_event_id=conference.external_event_id if conference else None,
                recurrence=request.recurrence,
                color=request.color or "#3b82f6",
                lead_id=request.lead_id,
            ),
        )

        roster = roster_for_create(
            organizer.id, request.participants, organizer.name, organizer.email
        )
        await self._repo.add_participants(tenant_id, meeting.id, roster)

        invitees = [
            row.user_id for row in roster[1:] if row.user_id is not None
        ]
        await self._notifier.emit(tenant_id, notifications.invitations(meeting, invitees))

        conference_outcome = "skipped"
        if conference is not None:
            conference_outcome = conference.reason.value if conference.reason else "ok"
        logger.info(
            "meeting_created",
            meeting_id=str(meeting.id),
            participants=len(roster),
            conference=conference_outcome,
        )
        return await self._load(tenant_id, meeting.id)

    # ── Update ───────────────────────────────────────────────────────────

    async def update(
        self,
        tenant_id: str,
        meeting_id: uuid.UUID,
        request: MeetingUpdateRequest,
    ) -> MeetingDetail:
        """Apply an edit, re-sync the calendar event and notify participants.

        Raises:
            MeetingNotFoundError: No such meeting.
            InvalidStatusTransitionError: Moving a cancelled meeting to
                any other status.
            MeetingValidationError: The new window is empty, a requested
                user does not exist, or a status other than cancelled was
                requested.
        """
        existing = await self._load(tenant_id, meeting_id)
        if (
            existing.status == MeetingStatus.CANCELLED
            and request.status is not None
            and request.status != MeetingStatus.CANCELLED
        ):
            raise InvalidStatusTransitionError("A cancelled meeting cannot be reopened")
        if request.status is not None and request.status != MeetingStatus.CANCELLED:
            # scheduled, in_progress and completed follow from the time window
            raise MeetingValidationError("Only status \"cancelled\" can be set on a meeting")

        values: dict = {}
        for field in _NULLABLE_FIELDS:
            if field in request.model_fields_set:
                values[field] = getattr(request, field)
        for field in _REQUIRED_FIELDS:
            value = getattr(request, field)
            if value is not None:
                values[field] = value
        if request.status is not None:
            values["status"] = request.status

        tz = existing.timezone
        start_iso = end_iso = None
        time_changed = False
        if request.schedule_changed():
            tz = request.timezone or existing.timezone
            old_day, old_start = to_wall_clock(existing.start_time, existing.timezone)
            _, old_end = to_wall_clock(existing.end_time, existing.timezone)
            start_iso, end_iso = resolve_window(
                request.start_date or old_day,
                request.start_time or old_start,
                request.end_time or old_end,
                tz,
            )
            start, end = parse_timestamp(start_iso), parse_timestamp(end_iso)
            values.update(start_time=start, end_time=end, timezone=tz)
            time_changed = start != existing.start_time or end != existing.end_time

        organizer_email = existing.organizer.email if existing.organizer else None
        emails = None
        if request.participants is not None:
            emails = await self._resolve_attendees(
                tenant_id, existing.organizer_id, organizer_email, request.participants
            )

        if values:
            await self._repo.update_meeting(tenant_id, meeting_id, values)

        if request.participants is not None:
            await self._repo.replace_participants(
                tenant_id,
                meeting_id,
                roster_for_update(existing.organizer_id, request.participants, organizer_email),
            )

        if existing.calendar_event_id:
            await self._provisioner.update(
                existing.organizer_id,
                existing.calendar_event_id,
                title=values.get("title"),
                description=request.description
                if "description" in request.model_fields_set
                else None,
                start=start_iso,
                end=end_iso,
                timezone=tz,
                attendees=emails,
            )

        updated = await self._load(tenant_id, meeting_id)
        recipients = updated.non_organizer_user_ids()
        became_cancelled = (
            request.status == MeetingStatus.CANCELLED
            and existing.status != MeetingStatus.CANCELLED
        )
        if became_cancelled:
            await self._notifier.emit(tenant_id, notifications.cancellations(updated, recipients))
        elif time_changed:
            await self._notifier.emit(tenant_id, notifications.reschedules(updated, recipients))

        logger.info(
            "meeting_updated",
            meeting_id=str(meeting_id),
            fields=sorted(values),
            roster_replaced=request.participants is not None,
            cancelled=became_cancelled,
        )
        return updated

    # ── Delete ───────────────────────────────────────────────────────────

    async def delete(self, tenant_id: str, meeting_id: uuid.UUID) -> None:
        """Cancel the calendar event, notify participants, delete the meeting.

        Succeeds locally even when the calendar delete fails. No calendar
        call is made for meetings that never had an event.
        """
        existing = await self._load(tenant_id, meeting_id)
        if existing.calendar_event_id:
            await self._provisioner.delete(existing.organizer_id, existing.calendar_event_id)

        await self._notifier.emit(
            tenant_id,
            notifications.cancellations(existing, existing.non_organizer_user_ids()),
        )
        await self._repo.delete_meeting(tenant_id, meeting_id)
        logger.info(
            "meeting_deleted",
            meeting_id=str(meeting_id),
            had_calendar_event=bool(existing.calendar_event_id),
        )

    # ── RSVP ─────────────────────────────────────────────────────────────

    async def respond(
        self,
        tenant_id: str,
        meeting_id: uuid.UUID,
        responder: UserSummary,
        status: RsvpStatus,
    ) -> Participant:
        """Record the responder's RSVP and tell the organizer.

        Raises:
            MeetingNotFoundError: No such meeting.
            ParticipantNotFoundError: Responder is not on the roster.
        """
        meeting = await self._load(tenant_id, meeting_id)
        participant = await self._repo.set_rsvp(tenant_id, meeting_id, responder.id, status)
        if participant is None:
            raise ParticipantNotFoundError(str(meeting_id), str(responder.id))

        if responder.id != meeting.organizer_id:
            await self._notifier.emit(
                tenant_id,
                [notifications.rsvp_received(meeting, responder.name, status)],
            )
        logger.info(
            "meeting_rsvp_recorded",
            meeting_id=str(meeting_id),
            user_id=str(responder.id),
            status=status.value,
        )
        return participant
