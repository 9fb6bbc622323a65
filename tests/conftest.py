"""Shared fixtures for meeting scheduling tests.

Provides in-memory test doubles so the coordinator and API can be
exercised without Postgres or Google:
- InMemoryMeetingRepository (MeetingRepository interface)
- FakeProvisioner (ConferenceProvisioner interface, records calls)
- RecordingNotificationSink (collects emitted notifications)
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

import pytest

from src.crm.core.tenant import TenantContext, reset_tenant_context, set_tenant_context
from src.crm.meetings.coordinator import MeetingCoordinator
from src.crm.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingDetail,
    MeetingFilter,
    NotificationCreate,
    Participant,
    ParticipantCreate,
    ParticipantRole,
    RsvpStatus,
    UserSummary,
    derive_status,
)
from src.crm.services.gsuite.models import ConferenceResult

TENANT_ID = str(uuid.uuid4())
TENANT_SLUG = "acme"
MEET_URL = "https://meet.google.com/abc-defg-hij"


# ── Test Doubles ─────────────────────────────────────────────────────────────


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for testing without database."""

    def __init__(self, users: Iterable[UserSummary] = ()) -> None:
        self.users: dict[uuid.UUID, UserSummary] = {u.id: u for u in users}
        self._meetings: dict[uuid.UUID, Meeting] = {}
        self._participants: dict[uuid.UUID, list[Participant]] = {}

    def _detail(self, meeting: Meeting) -> MeetingDetail:
        roster = sorted(
            self._participants.get(meeting.id, []),
            key=lambda p: p.role != ParticipantRole.ORGANIZER,
        )
        return MeetingDetail(
            **meeting.model_dump(exclude={"effective_status"}),
            organizer=self.users.get(meeting.organizer_id),
            participants=roster,
        )

    async def create_meeting(self, tenant_id: str, data: MeetingCreate) -> Meeting:
        now = datetime.now(timezone.utc)
        meeting = Meeting(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self._meetings[meeting.id] = meeting
        self._participants[meeting.id] = []
        return meeting

    async def get_meeting(self, tenant_id: str, meeting_id: uuid.UUID) -> MeetingDetail | None:
        meeting = self._meetings.get(meeting_id)
        if meeting is None or meeting.tenant_id != tenant_id:
            return None
        return self._detail(meeting)

    async def list_meetings(
        self,
        tenant_id: str,
        flt: MeetingFilter,
        now: datetime | None = None,
        day_timezone: str = "UTC",
    ) -> list[MeetingDetail]:
        now = now or datetime.now(timezone.utc)
        meetings = [m for m in self._meetings.values() if m.tenant_id == tenant_id]
        if flt.status is not None:
            meetings = [
                m for m in meetings
                if derive_status(m.status, m.start_time, m.end_time, now) == flt.status
            ]
        if flt.organizer_id is not None:
            meetings = [m for m in meetings if m.organizer_id == flt.organizer_id]
        return [self._detail(m) for m in sorted(meetings, key=lambda m: m.start_time)]

    async def update_meeting(
        self, tenant_id: str, meeting_id: uuid.UUID, values: dict[str, Any]
    ) -> Meeting | None:
        meeting = self._meetings.get(meeting_id)
        if meeting is None or meeting.tenant_id != tenant_id:
            return None
        updated = meeting.model_copy(
            update={**values, "updated_at": datetime.now(timezone.utc)}
        )
        self._meetings[meeting_id] = updated
        return updated

    async def delete_meeting(self, tenant_id: str, meeting_id: uuid.UUID) -> bool:
        meeting = self._meetings.get(meeting_id)
        if meeting is None or meeting.tenant_id != tenant_id:
            return False
        del self._meetings[meeting_id]
        self._participants.pop(meeting_id, None)
        return True

    async def add_participants(
        self, tenant_id: str, meeting_id: uuid.UUID, rows: Sequence[ParticipantCreate]
    ) -> None:
        now = datetime.now(timezone.utc)
        for row in rows:
            self._participants[meeting_id].append(
                Participant(
                    id=uuid.uuid4(),
                    meeting_id=meeting_id,
                    user_id=row.user_id,
                    email=row.email,
                    name=row.name,
                    role=row.role,
                    rsvp_status=row.rsvp_status,
                    invited_at=now,
                    responded_at=row.responded_at,
                    user=self.users.get(row.user_id) if row.user_id else None,
                )
            )

    async def replace_participants(
        self, tenant_id: str, meeting_id: uuid.UUID, rows: Sequence[ParticipantCreate]
    ) -> None:
        self._participants[meeting_id] = [
            p for p in self._participants[meeting_id] if p.role == ParticipantRole.ORGANIZER
        ]
        await self.add_participants(tenant_id, meeting_id, rows)

    async def set_rsvp(
        self,
        tenant_id: str,
        meeting_id: uuid.UUID,
        user_id: uuid.UUID,
        rsvp_status: RsvpStatus,
    ) -> Participant | None:
        roster = self._participants.get(meeting_id, [])
        for index, participant in enumerate(roster):
            if participant.user_id == user_id:
                updated = participant.model_copy(
                    update={
                        "rsvp_status": rsvp_status,
                        "responded_at": datetime.now(timezone.utc),
                    }
                )
                roster[index] = updated
                return updated
        return None

    async def get_users(
        self, tenant_id: str, user_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, UserSummary]:
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}


class FakeProvisioner:
    """Records calendar calls and returns canned results."""

    def __init__(
        self,
        result: ConferenceResult | None = None,
        update_ok: bool = True,
        delete_ok: bool = True,
    ) -> None:
        self.result = result or ConferenceResult(
            ok=True, join_link=MEET_URL, external_event_id="evt_12345"
        )
        self.update_ok = update_ok
        self.delete_ok = delete_ok
        self.create_calls: list[dict] = []
        self.update_calls: list[dict] = []
        self.delete_calls: list[dict] = []

    async def create(self, user_id, title, description, start, end, timezone, attendees):
        self.create_calls.append(
            {
                "user_id": user_id,
                "title": title,
                "description": description,
                "start": start,
                "end": end,
                "timezone": timezone,
                "attendees": list(attendees),
            }
        )
        return self.result

    async def update(self, user_id, event_id, **fields) -> bool:
        self.update_calls.append({"user_id": user_id, "event_id": event_id, **fields})
        return self.update_ok

    async def delete(self, user_id, event_id) -> bool:
        self.delete_calls.append({"user_id": user_id, "event_id": event_id})
        return self.delete_ok


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.notifications: list[NotificationCreate] = []

    async def emit(self, tenant_id: str, notifications: Sequence[NotificationCreate]) -> None:
        self.notifications.extend(notifications)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def organizer() -> UserSummary:
    return UserSummary(id=uuid.uuid4(), name="Priya Sharma", email="priya@acme.test")


@pytest.fixture
def colleague() -> UserSummary:
    return UserSummary(id=uuid.uuid4(), name="Bob Lee", email="bob@acme.test")


@pytest.fixture
def outsider() -> UserSummary:
    return UserSummary(id=uuid.uuid4(), name="Carol Diaz", email="carol@acme.test")


@pytest.fixture
def repo(organizer, colleague, outsider) -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository([organizer, colleague, outsider])


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def coordinator(repo, provisioner, sink) -> MeetingCoordinator:
    return MeetingCoordinator(repo, provisioner, sink, default_timezone="Asia/Kolkata")


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext.from_slug(TENANT_ID, TENANT_SLUG)


@pytest.fixture
def tenant_scope(tenant):
    """Set the tenant context for code that reads it from contextvars."""
    token = set_tenant_context(tenant)
    yield tenant
    reset_tenant_context(token)
