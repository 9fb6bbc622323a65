"""Meeting persistence models -- tenant-scoped tables for scheduling.

Three SQLAlchemy models using TenantBase for schema_translate_map isolation:
- MeetingModel: A scheduled meeting, optionally mirrored to Google Calendar
- MeetingParticipantModel: Roster entry with role and RSVP state
- NotificationModel: In-app notification written as a side effect

Participants are removed with their meeting (ON DELETE CASCADE). A partial
unique index keeps one row per (meeting, user) for internal participants;
external guests have no user_id and are not constrained.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.crm.core.database import TenantBase
from src.crm.models.tenant import Lead, User


class MeetingModel(TenantBase):
    """Meeting owned by an organizer, with optional Meet link and calendar event.

    start_time/end_time are stored as timestamptz; timezone keeps the IANA
    label the organizer scheduled in so wall-clock values can be rebuilt.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        Index("idx_meetings_tenant_start", "tenant_id", "start_time"),
        Index("idx_meetings_tenant_organizer", "tenant_id", "organizer_id"),
        CheckConstraint("start_time < end_time", name="ck_meetings_window"),
        {"schema": "tenant"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    organizer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenant.users.id"),
        nullable=False,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    calendar_event_id: Mapped[str | None] = mapped_column(String(300), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        default="scheduled",
        server_default=text("'scheduled'"),
    )
    recurrence: Mapped[str] = mapped_column(
        String(20),
        default="none",
        server_default=text("'none'"),
    )
    color: Mapped[str] = mapped_column(
        String(20),
        default="#3b82f6",
        server_default=text("'#3b82f6'"),
    )
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenant.leads.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    organizer: Mapped[User] = relationship(lazy="raise")
    lead: Mapped[Lead | None] = relationship(lazy="raise")
    participants: Mapped[list[MeetingParticipantModel]] = relationship(
        back_populates="meeting",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )


class MeetingParticipantModel(TenantBase):
    """One roster entry: an internal user, an external email, or both."""

    __tablename__ = "meeting_participants"
    __table_args__ = (
        Index(
            "uq_meeting_participants_user",
            "meeting_id",
            "user_id",
            unique=True,
            postgresql_where=text("user_id IS NOT NULL"),
        ),
        Index(
            "uq_meeting_participants_organizer",
            "meeting_id",
            unique=True,
            postgresql_where=text("role = 'organizer'"),
        ),
        {"schema": "tenant"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenant.meetings.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenant.users.id", ondelete="CASCADE"),
        nullable=True,
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        default="required",
        server_default=text("'required'"),
    )
    rsvp_status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        server_default=text("'pending'"),
    )
    invited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    meeting: Mapped[MeetingModel] = relationship(back_populates="participants", lazy="raise")
    user: Mapped[User | None] = relationship(lazy="raise")


class NotificationModel(TenantBase):
    """In-app notification. Written here, read by the notification pages."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user", "tenant_id", "user_id"),
        {"schema": "tenant"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenant.users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    related_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
