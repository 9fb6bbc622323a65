"""Add meeting scheduling tables: meetings, meeting_participants, notifications.

Revision ID: 003_meeting_tables
Revises: 002_initial_tenant
Create Date: 2026-10-17

Participants are deleted with their meeting (ON DELETE CASCADE). A partial
unique index allows each internal user at most once per meeting while
leaving email-only guests unconstrained. All tables carry the tenant
isolation RLS policy.
"""

from typing import Sequence, Union

from alembic import context, op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "003_meeting_tables"
down_revision: Union[str, None] = "002_initial_tenant"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLES = ("meetings", "meeting_participants", "notifications")


def _enable_rls(schema: str, table: str) -> None:
    op.execute(f'ALTER TABLE "{schema}".{table} ENABLE ROW LEVEL SECURITY')
    op.execute(f'ALTER TABLE "{schema}".{table} FORCE ROW LEVEL SECURITY')
    op.execute(f"""
        CREATE POLICY tenant_isolation ON "{schema}".{table}
        FOR ALL
        USING (tenant_id::text = current_setting('app.current_tenant_id', true))
        WITH CHECK (tenant_id::text = current_setting('app.current_tenant_id', true))
    """)


def upgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    # ── meetings ─────────────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "organizer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tenant.users.id"),
            nullable=False,
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("meeting_link", sa.String(500), nullable=True),
        sa.Column("calendar_event_id", sa.String(300), nullable=True),
        sa.Column("status", sa.String(50), server_default=sa.text("'scheduled'"), nullable=False),
        sa.Column("recurrence", sa.String(20), server_default=sa.text("'none'"), nullable=False),
        sa.Column("color", sa.String(20), server_default=sa.text("'#3b82f6'"), nullable=False),
        sa.Column(
            "lead_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tenant.leads.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("start_time < end_time", name="ck_meetings_window"),
        schema="tenant",
    )
    op.execute(
        f'CREATE INDEX idx_meetings_tenant_start '
        f'ON "{schema}".meetings(tenant_id, start_time)'
    )
    op.execute(
        f'CREATE INDEX idx_meetings_tenant_organizer '
        f'ON "{schema}".meetings(tenant_id, organizer_id)'
    )

    # ── meeting_participants ─────────────────────────────────────────────

    op.create_table(
        "meeting_participants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "meeting_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tenant.meetings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tenant.users.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("role", sa.String(20), server_default=sa.text("'required'"), nullable=False),
        sa.Column("rsvp_status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("invited_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        schema="tenant",
    )
    op.execute(
        f'CREATE UNIQUE INDEX uq_meeting_participants_user '
        f'ON "{schema}".meeting_participants(meeting_id, user_id) '
        f'WHERE user_id IS NOT NULL'
    )
    op.execute(
        f'CREATE UNIQUE INDEX uq_meeting_participants_organizer '
        f'ON "{schema}".meeting_participants(meeting_id) '
        f"WHERE role = 'organizer'"
    )

    # ── notifications ────────────────────────────────────────────────────

    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tenant.users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("related_id", UUID(as_uuid=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        schema="tenant",
    )
    op.execute(
        f'CREATE INDEX idx_notifications_user '
        f'ON "{schema}".notifications(tenant_id, user_id)'
    )

    for table in TABLES:
        _enable_rls(schema, table)


def downgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    for table in reversed(TABLES):
        op.execute(f'DROP POLICY IF EXISTS tenant_isolation ON "{schema}".{table}')
        op.drop_table(table, schema="tenant")
