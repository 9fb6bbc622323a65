"""Pydantic v2 schemas for meeting scheduling.

Defines the request bodies accepted by the meetings API, the response
shapes returned from the repository, and the enums shared by the
coordinator and reconciler.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Stored status. in_progress/completed are normally derived from time."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Recurrence(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"


class ParticipantRole(str, Enum):
    ORGANIZER = "organizer"
    REQUIRED = "required"
    OPTIONAL = "optional"


class RsvpStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"


class MeetingView(str, Enum):
    """Preset list views for GET /meetings."""

    ALL = "all"
    TODAY = "today"
    UPCOMING = "upcoming"
    PAST = "past"


def derive_status(
    status: MeetingStatus,
    start_time: datetime,
    end_time: datetime,
    now: datetime | None = None,
) -> MeetingStatus:
    """Compute the status a reader should display for a meeting.

    Cancelled is terminal and always wins. Otherwise the time window
    decides between scheduled, in_progress and completed.
    """
    if status == MeetingStatus.CANCELLED:
        return status
    now = now or datetime.now(timezone.utc)
    if now < start_time:
        return MeetingStatus.SCHEDULED
    if now < end_time:
        return MeetingStatus.IN_PROGRESS
    return MeetingStatus.COMPLETED


# ── Request Models ───────────────────────────────────────────────────────────


class ParticipantRequest(BaseModel):
    """One requested attendee: an internal user, a raw email, or both."""

    user_id: uuid.UUID | None = None
    email: str | None = None
    name: str | None = None
    role: ParticipantRole = ParticipantRole.REQUIRED

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("role")
    @classmethod
    def _no_requested_organizer(cls, v: ParticipantRole) -> ParticipantRole:
        # The organizer row is owned by the meeting, never by the request
        if v == ParticipantRole.ORGANIZER:
            return ParticipantRole.REQUIRED
        return v


class MeetingCreateRequest(BaseModel):
    """Body of POST /meetings.

    start_date/start_time/end_time are wall-clock values in ``timezone``.
    An end_time earlier than start_time means the meeting crosses midnight.
    """

    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    start_date: date
    start_time: str = Field(..., pattern=HHMM_PATTERN)
    end_time: str = Field(..., pattern=HHMM_PATTERN)
    timezone: str | None = None
    location: str | None = None
    lead_id: uuid.UUID | None = None
    color: str | None = None
    recurrence: Recurrence = Recurrence.NONE
    generate_meet_link: bool = False
    participants: list[ParticipantRequest] = Field(default_factory=list)


class MeetingUpdateRequest(BaseModel):
    """Body of PUT /meetings/{id}. Every field is optional.

    ``participants`` replaces the non-organizer roster when supplied;
    omitting it leaves the roster untouched.
    """

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    start_date: date | None = None
    start_time: str | None = Field(None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(None, pattern=HHMM_PATTERN)
    timezone: str | None = None
    location: str | None = None
    lead_id: uuid.UUID | None = None
    color: str | None = None
    recurrence: Recurrence | None = None
    status: MeetingStatus | None = None
    participants: list[ParticipantRequest] | None = None

    def schedule_changed(self) -> bool:
        return any(
            v is not None
            for v in (self.start_date, self.start_time, self.end_time, self.timezone)
        )


class RsvpRequest(BaseModel):
    """Body of POST /meetings/{id}/rsvp."""

    status: RsvpStatus

    @field_validator("status")
    @classmethod
    def _not_pending(cls, v: RsvpStatus) -> RsvpStatus:
        if v == RsvpStatus.PENDING:
            raise ValueError("Invalid RSVP status")
        return v


class MeetingFilter(BaseModel):
    """Query parameters for GET /meetings after 'all' sentinels are dropped."""

    status: MeetingStatus | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    organizer_id: uuid.UUID | None = None
    view: MeetingView = MeetingView.ALL


# ── Persistence Inputs ───────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Fully resolved meeting row, ready for the repository."""

    title: str
    description: str | None = None
    organizer_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    timezone: str
    location: str | None = None
    meeting_link: str | None = None
    calendar_event_id: str | None = None
    status: MeetingStatus = MeetingStatus.SCHEDULED
    recurrence: Recurrence = Recurrence.NONE
    color: str = "#3b82f6"
    lead_id: uuid.UUID | None = None


class ParticipantCreate(BaseModel):
    """Participant row computed by the reconciler."""

    user_id: uuid.UUID | None = None
    email: str | None = None
    name: str | None = None
    role: ParticipantRole = ParticipantRole.REQUIRED
    rsvp_status: RsvpStatus = RsvpStatus.PENDING
    responded_at: datetime | None = None


class NotificationCreate(BaseModel):
    user_id: uuid.UUID
    title: str
    message: str
    type: str
    related_id: uuid.UUID | None = None


# ── Response Models ──────────────────────────────────────────────────────────


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str | None = None
    email: str
    avatar_url: str | None = None


class LeadSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    company_name: str | None = None


class Participant(BaseModel):
    """A persisted roster entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    meeting_id: uuid.UUID
    user_id: uuid.UUID | None = None
    email: str | None = None
    name: str | None = None
    role: ParticipantRole
    rsvp_status: RsvpStatus
    invited_at: datetime | None = None
    responded_at: datetime | None = None
    user: UserSummary | None = None


class Meeting(BaseModel):
    """A persisted meeting as returned by the list endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: str
    title: str
    description: str | None = None
    organizer_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    timezone: str
    location: str | None = None
    meeting_link: str | None = None
    calendar_event_id: str | None = None
    status: MeetingStatus
    recurrence: Recurrence = Recurrence.NONE
    color: str = "#3b82f6"
    lead_id: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def effective_status(self) -> MeetingStatus:
        return derive_status(self.status, self.start_time, self.end_time)


class MeetingDetail(Meeting):
    """A meeting joined with its organizer, roster and related lead."""

    organizer: UserSummary | None = None
    participants: list[Participant] = Field(default_factory=list)
    lead: LeadSummary | None = None

    def non_organizer_user_ids(self) -> list[uuid.UUID]:
        return [
            p.user_id
            for p in self.participants
            if p.role != ParticipantRole.ORGANIZER and p.user_id is not None
        ]
