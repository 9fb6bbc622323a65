"""In-app notifications emitted by the meeting lifecycle.

Notifications are fire-and-forget: a failed write is logged and dropped,
it never fails the meeting operation that produced it.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterable, Sequence
from typing import Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.meetings.models import NotificationModel
from src.crm.meetings.schemas import Meeting, NotificationCreate, RsvpStatus
from src.crm.meetings.timestamps import to_wall_clock

logger = structlog.get_logger(__name__)

TYPE_INVITE = "meeting_invite"
TYPE_MEETING = "meeting"


class NotificationSink(Protocol):
    async def emit(self, tenant_id: str, notifications: Sequence[NotificationCreate]) -> None: ...


class DatabaseNotificationSink:
    """Writes notifications to the tenant's notifications table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def emit(self, tenant_id: str, notifications: Sequence[NotificationCreate]) -> None:
        if not notifications:
            return
        try:
            async for session in self._session_factory():
                session.add_all(
                    [
                        NotificationModel(
                            tenant_id=uuid.UUID(tenant_id),
                            user_id=n.user_id,
                            title=n.title,
                            message=n.message,
                            type=n.type,
                            related_id=n.related_id,
                        )
                        for n in notifications
                    ]
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception(
                "notification_emit_failed",
                tenant_id=tenant_id,
                count=len(notifications),
            )
            return
        logger.info("notifications_emitted", tenant_id=tenant_id, count=len(notifications))


# ── Message builders ─────────────────────────────────────────────────────────


def invitations(meeting: Meeting, user_ids: Iterable[uuid.UUID]) -> list[NotificationCreate]:
    day, start = to_wall_clock(meeting.start_time, meeting.timezone)
    message = f'You\'ve been invited to "{meeting.title}" on {day.isoformat()} at {start}'
    return [
        NotificationCreate(
            user_id=user_id,
            title="Meeting Invitation",
            message=message,
            type=TYPE_INVITE,
            related_id=meeting.id,
        )
        for user_id in user_ids
    ]


def cancellations(meeting: Meeting, user_ids: Iterable[uuid.UUID]) -> list[NotificationCreate]:
    return [
        NotificationCreate(
            user_id=user_id,
            title="Meeting Cancelled",
            message=f'"{meeting.title}" has been cancelled',
            type=TYPE_MEETING,
            related_id=meeting.id,
        )
        for user_id in user_ids
    ]


def reschedules(meeting: Meeting, user_ids: Iterable[uuid.UUID]) -> list[NotificationCreate]:
    return [
        NotificationCreate(
            user_id=user_id,
            title="Meeting Updated",
            message=f'"{meeting.title}" has been rescheduled',
            type=TYPE_MEETING,
            related_id=meeting.id,
        )
        for user_id in user_ids
    ]


def rsvp_received(
    meeting: Meeting, responder_name: str | None, status: RsvpStatus
) -> NotificationCreate:
    return NotificationCreate(
        user_id=meeting.organizer_id,
        title="Meeting RSVP",
        message=f'{responder_name or "Someone"} {status.value} your meeting "{meeting.title}"',
        type=TYPE_MEETING,
        related_id=meeting.id,
    )
