"""Meeting repository -- async CRUD for meetings, participants and user lookups.

Uses the session_factory callable pattern: each method opens one session
from the factory, so the repository works with both the request-scoped
tenant session and test doubles. Returns Pydantic schemas, never ORM
objects.

All methods take tenant_id as first argument for tenant-scoped queries.
Database failures are re-raised as MeetingStoreError so the API layer
can answer with a 500 and an error body.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import and_, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.crm.meetings.errors import MeetingStoreError
from src.crm.meetings.models import MeetingModel, MeetingParticipantModel
from src.crm.meetings.schemas import (
    LeadSummary,
    Meeting,
    MeetingCreate,
    MeetingDetail,
    MeetingFilter,
    MeetingStatus,
    MeetingView,
    Participant,
    ParticipantCreate,
    ParticipantRole,
    Recurrence,
    RsvpStatus,
    UserSummary,
)
from src.crm.models.tenant import User

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@contextmanager
def _store_errors(operation: str, **context: Any) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("meeting_store_error", operation=operation, **context)
        raise MeetingStoreError(f"Failed to {operation}") from exc


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        tenant_id=str(model.tenant_id),
        title=model.title,
        description=model.description,
        organizer_id=model.organizer_id,
        start_time=model.start_time,
        end_time=model.end_time,
        timezone=model.timezone,
        location=model.location,
        meeting_link=model.meeting_link,
        calendar_event_id=model.calendar_event_id,
        status=MeetingStatus(model.status),
        recurrence=Recurrence(model.recurrence),
        color=model.color,
        lead_id=model.lead_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_participant(
    model: MeetingParticipantModel, with_user: bool = False
) -> Participant:
    user = None
    if with_user and model.user is not None:
        user = UserSummary.model_validate(model.user)
    return Participant(
        id=model.id,
        meeting_id=model.meeting_id,
        user_id=model.user_id,
        email=model.email,
        name=model.name,
        role=ParticipantRole(model.role),
        rsvp_status=RsvpStatus(model.rsvp_status),
        invited_at=model.invited_at,
        responded_at=model.responded_at,
        user=user,
    )


def _model_to_detail(model: MeetingModel) -> MeetingDetail:
    """Convert a MeetingModel with eager-loaded relations to MeetingDetail."""
    base = _model_to_meeting(model)
    participants = sorted(
        (_model_to_participant(p, with_user=True) for p in model.participants),
        key=lambda p: (p.role != ParticipantRole.ORGANIZER, p.invited_at or _EPOCH),
    )
    return MeetingDetail(
        **base.model_dump(exclude={"effective_status"}),
        organizer=UserSummary.model_validate(model.organizer) if model.organizer else None,
        participants=participants,
        lead=LeadSummary.model_validate(model.lead) if model.lead else None,
    )


def _detail_options() -> list:
    return [
        selectinload(MeetingModel.organizer),
        selectinload(MeetingModel.lead),
        selectinload(MeetingModel.participants).selectinload(MeetingParticipantModel.user),
    ]


def status_clause(status: MeetingStatus, now: datetime) -> Any:
    """WHERE clause matching meetings whose derived status is ``status``.

    Mirrors derive_status: only cancellation is stored, the other states
    follow from the time window.
    """
    if status == MeetingStatus.CANCELLED:
        return MeetingModel.status == MeetingStatus.CANCELLED.value
    live = MeetingModel.status != MeetingStatus.CANCELLED.value
    if status == MeetingStatus.SCHEDULED:
        return and_(live, MeetingModel.start_time > now)
    if status == MeetingStatus.IN_PROGRESS:
        return and_(live, MeetingModel.start_time <= now, MeetingModel.end_time > now)
    return and_(live, MeetingModel.end_time <= now)


def day_bounds(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Start and end of ``now``'s calendar day in the given zone."""
    zone = ZoneInfo(tz_name)
    local_day = now.astimezone(zone).date()
    start = datetime.combine(local_day, time.min, tzinfo=zone)
    return start, start + timedelta(days=1)


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async CRUD operations for meetings and their participants.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, tenant_id: str, data: MeetingCreate) -> Meeting:
        """Insert a meeting row.

        Args:
            tenant_id: Tenant UUID string.
            data: Fully resolved meeting fields.

        Returns:
            Meeting with all persisted fields.
        """
        async for session in self._session_factory():
            with _store_errors("create meeting", tenant_id=tenant_id):
                model = MeetingModel(
                    tenant_id=uuid.UUID(tenant_id),
                    title=data.title,
                    description=data.description,
                    organizer_id=data.organizer_id,
                    start_time=data.start_time,
                    end_time=data.end_time,
                    timezone=data.timezone,
                    location=data.location,
                    meeting_link=data.meeting_link,
                    calendar_event_id=data.calendar_event_id,
                    status=data.status.value,
                    recurrence=data.recurrence.value,
                    color=data.color,
                    lead_id=data.lead_id,
                )
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return _model_to_meeting(model)
        raise MeetingStoreError("Failed to create meeting")

    async def get_meeting(
        self, tenant_id: str, meeting_id: uuid.UUID
    ) -> MeetingDetail | None:
        """Get a meeting with organizer, participants and lead.

        Returns:
            MeetingDetail if found, None otherwise.
        """
        async for session in self._session_factory():
            with _store_errors("load meeting", meeting_id=str(meeting_id)):
                stmt = (
                    select(MeetingModel)
                    .where(
                        MeetingModel.tenant_id == uuid.UUID(tenant_id),
                        MeetingModel.id == meeting_id,
                    )
                    .options(*_detail_options())
                )
                result = await session.execute(stmt)
                model = result.scalar_one_or_none()
                if model is None:
                    return None
                return _model_to_detail(model)
        return None

    async def list_meetings(
        self,
        tenant_id: str,
        flt: MeetingFilter,
        now: datetime | None = None,
        day_timezone: str = "UTC",
    ) -> list[MeetingDetail]:
        """List meetings matching the filter, ordered by start time.

        ``view=today`` covers the current calendar day in ``day_timezone``;
        ``upcoming`` is not-yet-started and not cancelled; ``past`` has ended.
        ``status`` matches the derived status, not the stored column.
        """
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(MeetingModel)
            .where(MeetingModel.tenant_id == uuid.UUID(tenant_id))
            .options(*_detail_options())
            .order_by(MeetingModel.start_time)
        )
        if flt.status is not None:
            stmt = stmt.where(status_clause(flt.status, now))
        if flt.date_from is not None:
            stmt = stmt.where(MeetingModel.start_time >= flt.date_from)
        if flt.date_to is not None:
            stmt = stmt.where(MeetingModel.start_time <= flt.date_to)
        if flt.organizer_id is not None:
            stmt = stmt.where(MeetingModel.organizer_id == flt.organizer_id)

        if flt.view == MeetingView.TODAY:
            day_start, day_end = day_bounds(now, day_timezone)
            stmt = stmt.where(
                MeetingModel.start_time >= day_start,
                MeetingModel.start_time < day_end,
            )
        elif flt.view == MeetingView.UPCOMING:
            stmt = stmt.where(
                MeetingModel.start_time >= now,
                MeetingModel.status != MeetingStatus.CANCELLED.value,
            )
        elif flt.view == MeetingView.PAST:
            stmt = stmt.where(MeetingModel.end_time < now)

        async for session in self._session_factory():
            with _store_errors("list meetings", tenant_id=tenant_id):
                result = await session.execute(stmt)
                return [_model_to_detail(m) for m in result.scalars().all()]
        return []

    async def update_meeting(
        self, tenant_id: str, meeting_id: uuid.UUID, values: dict[str, Any]
    ) -> Meeting | None:
        """Apply column updates to a meeting.

        Args:
            values: Column name to new value. Enum values are stored by value.

        Returns:
            Updated Meeting, or None if the meeting does not exist.
        """
        async for session in self._session_factory():
            with _store_errors("update meeting", meeting_id=str(meeting_id)):
                stmt = select(MeetingModel).where(
                    MeetingModel.tenant_id == uuid.UUID(tenant_id),
                    MeetingModel.id == meeting_id,
                )
                model = (await session.execute(stmt)).scalar_one_or_none()
                if model is None:
                    return None
                for column, value in values.items():
                    setattr(model, column, getattr(value, "value", value))
                model.updated_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(model)
                return _model_to_meeting(model)
        return None

    async def delete_meeting(self, tenant_id: str, meeting_id: uuid.UUID) -> bool:
        """Delete a meeting; participants go with it via ON DELETE CASCADE."""
        async for session in self._session_factory():
            with _store_errors("delete meeting", meeting_id=str(meeting_id)):
                result = await session.execute(
                    delete(MeetingModel).where(
                        MeetingModel.tenant_id == uuid.UUID(tenant_id),
                        MeetingModel.id == meeting_id,
                    )
                )
                await session.commit()
                return result.rowcount > 0
        return False

    # ── Participants ─────────────────────────────────────────────────────

    async def add_participants(
        self,
        tenant_id: str,
        meeting_id: uuid.UUID,
        rows: Sequence[ParticipantCreate],
    ) -> None:
        """Insert participant rows for a meeting."""
        if not rows:
            return
        async for session in self._session_factory():
            with _store_errors("add participants", meeting_id=str(meeting_id)):
                session.add_all(
                    [self._participant_model(tenant_id, meeting_id, row) for row in rows]
                )
                await session.commit()

    async def replace_participants(
        self,
        tenant_id: str,
        meeting_id: uuid.UUID,
        rows: Sequence[ParticipantCreate],
    ) -> None:
        """Delete every non-organizer participant, then insert ``rows``."""
        async for session in self._session_factory():
            with _store_errors("replace participants", meeting_id=str(meeting_id)):
                await session.execute(
                    delete(MeetingParticipantModel).where(
                        MeetingParticipantModel.tenant_id == uuid.UUID(tenant_id),
                        MeetingParticipantModel.meeting_id == meeting_id,
                        MeetingParticipantModel.role != ParticipantRole.ORGANIZER.value,
                    )
                )
                session.add_all(
                    [self._participant_model(tenant_id, meeting_id, row) for row in rows]
                )
                await session.commit()

    async def set_rsvp(
        self,
        tenant_id: str,
        meeting_id: uuid.UUID,
        user_id: uuid.UUID,
        rsvp_status: RsvpStatus,
    ) -> Participant | None:
        """Record a participant's RSVP and stamp responded_at.

        Returns:
            Updated Participant, or None if the user is not on the roster.
        """
        async for session in self._session_factory():
            with _store_errors("record rsvp", meeting_id=str(meeting_id)):
                stmt = select(MeetingParticipantModel).where(
                    MeetingParticipantModel.tenant_id == uuid.UUID(tenant_id),
                    MeetingParticipantModel.meeting_id == meeting_id,
                    MeetingParticipantModel.user_id == user_id,
                )
                model = (await session.execute(stmt)).scalar_one_or_none()
                if model is None:
                    return None
                model.rsvp_status = rsvp_status.value
                model.responded_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(model)
                return _model_to_participant(model)
        return None

    @staticmethod
    def _participant_model(
        tenant_id: str, meeting_id: uuid.UUID, row: ParticipantCreate
    ) -> MeetingParticipantModel:
        return MeetingParticipantModel(
            tenant_id=uuid.UUID(tenant_id),
            meeting_id=meeting_id,
            user_id=row.user_id,
            email=row.email,
            name=row.name,
            role=row.role.value,
            rsvp_status=row.rsvp_status.value,
            responded_at=row.responded_at,
        )

    # ── Users ────────────────────────────────────────────────────────────

    async def get_users(
        self, tenant_id: str, user_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, UserSummary]:
        """Look up users by id. Unknown ids are absent from the result."""
        if not user_ids:
            return {}
        async for session in self._session_factory():
            with _store_errors("load users", tenant_id=tenant_id):
                stmt = select(User).where(
                    User.tenant_id == uuid.UUID(tenant_id),
                    User.id.in_(list(user_ids)),
                )
                result = await session.execute(stmt)
                return {
                    u.id: UserSummary.model_validate(u) for u in result.scalars().all()
                }
        return {}
