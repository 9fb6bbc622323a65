"""Tests for MeetingCoordinator create, update, delete and RSVP flows.

Uses the in-memory repository, fake provisioner and recording sink from
conftest; no database or Google access.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

import pytest

from src.crm.meetings.errors import (
    InvalidStatusTransitionError,
    MeetingNotFoundError,
    MeetingValidationError,
    ParticipantNotFoundError,
)
from src.crm.meetings.schemas import (
    MeetingCreateRequest,
    MeetingStatus,
    MeetingUpdateRequest,
    ParticipantRequest,
    ParticipantRole,
    RsvpStatus,
)
from src.crm.services.gsuite.models import ConferenceIssue, ConferenceResult


def _create_request(**overrides) -> MeetingCreateRequest:
    defaults = {
        "title": "Pipeline review",
        "start_date": date(2024, 3, 10),
        "start_time": "23:30",
        "end_time": "00:15",
        "timezone": "Asia/Kolkata",
        "generate_meet_link": True,
    }
    defaults.update(overrides)
    return MeetingCreateRequest(**defaults)


async def _schedule(coordinator, tenant, organizer, participants=(), **overrides):
    request = _create_request(participants=list(participants), **overrides)
    return await coordinator.create(tenant.tenant_id, organizer, request)


# ── Create ───────────────────────────────────────────────────────────────────


class TestCreate:
    async def test_creates_meeting_with_link_and_roster(
        self, coordinator, provisioner, sink, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator,
            tenant,
            organizer,
            [
                ParticipantRequest(user_id=colleague.id),
                ParticipantRequest(email="guest@example.com", name="Guest"),
                ParticipantRequest(user_id=organizer.id),
            ],
        )

        assert meeting.meeting_link == "https://meet.google.com/abc-defg-hij"
        assert meeting.calendar_event_id == "evt_12345"
        assert meeting.start_time == datetime(2024, 3, 10, 18, 0, tzinfo=timezone.utc)
        assert meeting.end_time == datetime(2024, 3, 10, 18, 45, tzinfo=timezone.utc)
        assert meeting.color == "#3b82f6"

        roster = meeting.participants
        assert roster[0].user_id == organizer.id
        assert roster[0].role == ParticipantRole.ORGANIZER
        assert roster[0].rsvp_status == RsvpStatus.ACCEPTED
        assert len([p for p in roster if p.role == ParticipantRole.ORGANIZER]) == 1
        assert {p.email for p in roster[1:]} == {None, "guest@example.com"}
        assert all(p.rsvp_status == RsvpStatus.PENDING for p in roster[1:])

        call = provisioner.create_calls[0]
        assert call["start"] == "2024-03-10T23:30:00+05:30"
        assert call["end"] == "2024-03-11T00:15:00+05:30"
        assert call["attendees"] == ["guest@example.com", colleague.email]

    async def test_invitations_go_to_internal_invitees_only(
        self, coordinator, sink, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator,
            tenant,
            organizer,
            [ParticipantRequest(user_id=colleague.id), ParticipantRequest(email="guest@example.com")],
        )

        assert [n.user_id for n in sink.notifications] == [colleague.id]
        invite = sink.notifications[0]
        assert invite.type == "meeting_invite"
        assert invite.title == "Meeting Invitation"
        assert invite.related_id == meeting.id
        assert invite.message == 'You\'ve been invited to "Pipeline review" on 2024-03-10 at 23:30'

    async def test_without_meet_link_calendar_is_not_touched(
        self, coordinator, provisioner, tenant, organizer
    ):
        meeting = await _schedule(coordinator, tenant, organizer, generate_meet_link=False)

        assert provisioner.create_calls == []
        assert meeting.meeting_link is None
        assert meeting.calendar_event_id is None

    async def test_not_connected_still_saves_meeting(
        self, coordinator, provisioner, repo, tenant, organizer
    ):
        provisioner.result = ConferenceResult.degraded(ConferenceIssue.NOT_CONNECTED)
        meeting = await _schedule(coordinator, tenant, organizer)

        assert meeting.meeting_link is None
        assert meeting.calendar_event_id is None
        assert await repo.get_meeting(tenant.tenant_id, meeting.id) is not None

    async def test_pending_link_keeps_event_id(self, coordinator, provisioner, tenant, organizer):
        provisioner.result = ConferenceResult.degraded(
            ConferenceIssue.LINK_PENDING, external_event_id="evt_pending"
        )
        meeting = await _schedule(coordinator, tenant, organizer)

        assert meeting.meeting_link is None
        assert meeting.calendar_event_id == "evt_pending"

    async def test_unknown_participant_rejected_before_any_write(
        self, coordinator, provisioner, repo, tenant, organizer
    ):
        with pytest.raises(MeetingValidationError):
            await _schedule(coordinator, tenant, organizer, [ParticipantRequest(user_id=uuid.uuid4())])

        assert provisioner.create_calls == []
        assert repo._meetings == {}

    async def test_empty_window_rejected(self, coordinator, tenant, organizer):
        with pytest.raises(MeetingValidationError):
            await _schedule(coordinator, tenant, organizer, start_time="10:00", end_time="10:00")

    async def test_default_timezone_used_when_missing(self, coordinator, tenant, organizer):
        meeting = await _schedule(
            coordinator, tenant, organizer, timezone=None, start_time="09:00", end_time="10:00"
        )
        assert meeting.timezone == "Asia/Kolkata"
        assert meeting.start_time == datetime(2024, 3, 10, 3, 30, tzinfo=timezone.utc)


# ── Update ───────────────────────────────────────────────────────────────────


class TestUpdate:
    async def test_reschedule_patches_event_and_notifies(
        self, coordinator, provisioner, sink, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator, tenant, organizer, [ParticipantRequest(user_id=colleague.id)],
            start_time="10:00", end_time="11:00",
        )
        sink.notifications.clear()

        updated = await coordinator.update(
            tenant.tenant_id,
            meeting.id,
            MeetingUpdateRequest(start_time="14:00", end_time="15:00"),
        )

        assert updated.start_time == datetime(2024, 3, 10, 8, 30, tzinfo=timezone.utc)
        patch = provisioner.update_calls[0]
        assert patch["event_id"] == "evt_12345"
        assert patch["start"] == "2024-03-10T14:00:00+05:30"
        assert patch["end"] == "2024-03-10T15:00:00+05:30"
        assert patch["timezone"] == "Asia/Kolkata"
        assert patch["attendees"] is None

        assert [n.user_id for n in sink.notifications] == [colleague.id]
        assert sink.notifications[0].title == "Meeting Updated"

    async def test_title_only_edit_sends_no_notification(
        self, coordinator, provisioner, sink, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator, tenant, organizer, [ParticipantRequest(user_id=colleague.id)]
        )
        sink.notifications.clear()

        updated = await coordinator.update(
            tenant.tenant_id, meeting.id, MeetingUpdateRequest(title="Renamed")
        )

        assert updated.title == "Renamed"
        assert provisioner.update_calls[0]["title"] == "Renamed"
        assert provisioner.update_calls[0]["start"] is None
        assert sink.notifications == []

    async def test_cancel_without_calendar_event(
        self, coordinator, provisioner, sink, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator, tenant, organizer, [ParticipantRequest(user_id=colleague.id)],
            generate_meet_link=False,
        )
        sink.notifications.clear()

        updated = await coordinator.update(
            tenant.tenant_id, meeting.id, MeetingUpdateRequest(status=MeetingStatus.CANCELLED)
        )

        assert updated.status == MeetingStatus.CANCELLED
        assert updated.effective_status == MeetingStatus.CANCELLED
        assert provisioner.update_calls == []
        assert provisioner.delete_calls == []
        assert [n.title for n in sink.notifications] == ["Meeting Cancelled"]
        assert sink.notifications[0].user_id == colleague.id

    async def test_cancelled_meeting_cannot_be_reopened(self, coordinator, tenant, organizer):
        meeting = await _schedule(coordinator, tenant, organizer)
        await coordinator.update(
            tenant.tenant_id, meeting.id, MeetingUpdateRequest(status=MeetingStatus.CANCELLED)
        )

        with pytest.raises(InvalidStatusTransitionError):
            await coordinator.update(
                tenant.tenant_id, meeting.id, MeetingUpdateRequest(status=MeetingStatus.SCHEDULED)
            )

    @pytest.mark.parametrize(
        "status",
        [MeetingStatus.SCHEDULED, MeetingStatus.IN_PROGRESS, MeetingStatus.COMPLETED],
    )
    async def test_time_derived_status_cannot_be_written(
        self, coordinator, repo, tenant, organizer, status
    ):
        meeting = await _schedule(coordinator, tenant, organizer, start_date=date(2099, 1, 1))

        with pytest.raises(MeetingValidationError):
            await coordinator.update(tenant.tenant_id, meeting.id, MeetingUpdateRequest(status=status))

        stored = await repo.get_meeting(tenant.tenant_id, meeting.id)
        assert stored.status == MeetingStatus.SCHEDULED
        assert stored.effective_status == MeetingStatus.SCHEDULED

    async def test_resending_same_roster_is_idempotent(
        self, coordinator, provisioner, tenant, organizer, colleague
    ):
        roster = [
            ParticipantRequest(user_id=colleague.id),
            ParticipantRequest(email="guest@example.com", name="Guest"),
        ]
        meeting = await _schedule(coordinator, tenant, organizer, roster)
        await coordinator.respond(tenant.tenant_id, meeting.id, colleague, RsvpStatus.ACCEPTED)

        updated = await coordinator.update(
            tenant.tenant_id, meeting.id, MeetingUpdateRequest(participants=roster)
        )

        def invitees(m):
            return {
                (p.user_id, p.email): p.rsvp_status
                for p in m.participants
                if p.role != ParticipantRole.ORGANIZER
            }

        assert set(invitees(updated)) == set(invitees(meeting))
        assert set(invitees(updated).values()) == {RsvpStatus.PENDING}
        assert set(provisioner.update_calls[-1]["attendees"]) == set(
            provisioner.create_calls[0]["attendees"]
        )

    async def test_participant_replacement_resets_rsvp(
        self, coordinator, provisioner, tenant, organizer, colleague, outsider
    ):
        meeting = await _schedule(
            coordinator, tenant, organizer, [ParticipantRequest(user_id=colleague.id)]
        )
        await coordinator.respond(tenant.tenant_id, meeting.id, colleague, RsvpStatus.ACCEPTED)

        updated = await coordinator.update(
            tenant.tenant_id,
            meeting.id,
            MeetingUpdateRequest(
                participants=[
                    ParticipantRequest(user_id=colleague.id),
                    ParticipantRequest(user_id=outsider.id),
                    ParticipantRequest(user_id=organizer.id),
                ]
            ),
        )

        organizers = [p for p in updated.participants if p.role == ParticipantRole.ORGANIZER]
        assert [p.user_id for p in organizers] == [organizer.id]
        assert organizers[0].rsvp_status == RsvpStatus.ACCEPTED
        invitees = {p.user_id: p.rsvp_status for p in updated.participants if p.role != ParticipantRole.ORGANIZER}
        assert invitees == {colleague.id: RsvpStatus.PENDING, outsider.id: RsvpStatus.PENDING}
        assert provisioner.update_calls[-1]["attendees"] == [colleague.email, outsider.email]

    async def test_explicit_null_clears_description(self, coordinator, tenant, organizer):
        meeting = await _schedule(coordinator, tenant, organizer, description="Agenda")
        updated = await coordinator.update(
            tenant.tenant_id, meeting.id, MeetingUpdateRequest(description=None)
        )
        assert updated.description is None

    async def test_missing_meeting(self, coordinator, tenant):
        with pytest.raises(MeetingNotFoundError):
            await coordinator.update(tenant.tenant_id, uuid.uuid4(), MeetingUpdateRequest(title="x"))


# ── Delete ───────────────────────────────────────────────────────────────────


class TestDelete:
    async def test_deletes_event_notifies_and_removes(
        self, coordinator, provisioner, sink, repo, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator, tenant, organizer, [ParticipantRequest(user_id=colleague.id)]
        )
        sink.notifications.clear()

        await coordinator.delete(tenant.tenant_id, meeting.id)

        assert provisioner.delete_calls == [{"user_id": organizer.id, "event_id": "evt_12345"}]
        assert [n.user_id for n in sink.notifications] == [colleague.id]
        assert sink.notifications[0].message == '"Pipeline review" has been cancelled'
        assert await repo.get_meeting(tenant.tenant_id, meeting.id) is None

    async def test_no_calendar_call_without_event(self, coordinator, provisioner, repo, tenant, organizer):
        meeting = await _schedule(coordinator, tenant, organizer, generate_meet_link=False)
        await coordinator.delete(tenant.tenant_id, meeting.id)

        assert provisioner.delete_calls == []
        assert await repo.get_meeting(tenant.tenant_id, meeting.id) is None

    async def test_calendar_failure_does_not_block_delete(
        self, coordinator, provisioner, repo, tenant, organizer
    ):
        provisioner.delete_ok = False
        meeting = await _schedule(coordinator, tenant, organizer)
        await coordinator.delete(tenant.tenant_id, meeting.id)
        assert await repo.get_meeting(tenant.tenant_id, meeting.id) is None

    async def test_missing_meeting(self, coordinator, tenant):
        with pytest.raises(MeetingNotFoundError):
            await coordinator.delete(tenant.tenant_id, uuid.uuid4())


# ── RSVP ─────────────────────────────────────────────────────────────────────


class TestRespond:
    async def test_invitee_response_notifies_organizer(
        self, coordinator, sink, tenant, organizer, colleague
    ):
        meeting = await _schedule(
            coordinator, tenant, organizer, [ParticipantRequest(user_id=colleague.id)]
        )
        sink.notifications.clear()

        participant = await coordinator.respond(
            tenant.tenant_id, meeting.id, colleague, RsvpStatus.DECLINED
        )

        assert participant.rsvp_status == RsvpStatus.DECLINED
        assert participant.responded_at is not None
        assert [n.user_id for n in sink.notifications] == [organizer.id]
        assert sink.notifications[0].message == 'Bob Lee declined your meeting "Pipeline review"'

    async def test_non_participant_rejected(self, coordinator, tenant, organizer, outsider):
        meeting = await _schedule(coordinator, tenant, organizer)
        with pytest.raises(ParticipantNotFoundError):
            await coordinator.respond(tenant.tenant_id, meeting.id, outsider, RsvpStatus.ACCEPTED)

    async def test_organizer_response_sends_nothing(self, coordinator, sink, tenant, organizer):
        meeting = await _schedule(coordinator, tenant, organizer)
        sink.notifications.clear()
        await coordinator.respond(tenant.tenant_id, meeting.id, organizer, RsvpStatus.TENTATIVE)
        assert sink.notifications == []
