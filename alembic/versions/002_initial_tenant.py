"""Initial tenant schema: users (with Google credential columns) and leads.

Revision ID: 002_initial_tenant
Revises:
Create Date: 2026-10-17

Note: This migration uses schema="tenant" placeholder. When run via
schema_translate_map, "tenant" is replaced with the actual tenant schema.
However, for RLS and index DDL we use the actual schema name from -x args.

Writes to users are further restricted: a row may only be updated by its
own user (app.current_user_id) or by a service session (app.service_role),
which is how Google token rotation is written back.
"""

from typing import Sequence, Union

from alembic import context, op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "002_initial_tenant"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = ("tenant",)
depends_on: Union[str, Sequence[str], None] = None


def _enable_rls(schema: str, table: str) -> None:
    op.execute(f'ALTER TABLE "{schema}".{table} ENABLE ROW LEVEL SECURITY')
    op.execute(f'ALTER TABLE "{schema}".{table} FORCE ROW LEVEL SECURITY')
    op.execute(f"""
        CREATE POLICY tenant_isolation ON "{schema}".{table}
        FOR ALL
        USING (tenant_id::text = current_setting('app.current_tenant_id', true))
        WITH CHECK (tenant_id::text = current_setting('app.current_tenant_id', true))
    """)
    op.execute(f'CREATE INDEX idx_{table}_tenant ON "{schema}".{table}(tenant_id)')


def upgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    # ── users ────────────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("avatar_url", sa.String(1000), nullable=True),
        sa.Column("role", sa.String(50), server_default=sa.text("'member'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("google_access_token", sa.Text(), nullable=True),
        sa.Column("google_refresh_token", sa.Text(), nullable=True),
        sa.Column("google_token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        schema="tenant",
    )
    _enable_rls(schema, "users")
    op.execute(f"""
        CREATE POLICY users_update_self_or_service ON "{schema}".users
        AS RESTRICTIVE
        FOR UPDATE
        USING (
            current_setting('app.service_role', true) = 'on'
            OR id::text = current_setting('app.current_user_id', true)
        )
    """)
    op.execute(f'CREATE UNIQUE INDEX idx_users_email_tenant ON "{schema}".users(tenant_id, lower(email))')

    # ── leads (owned by the leads pages; meetings only reference them) ───

    op.create_table(
        "leads",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("company_name", sa.String(200), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        schema="tenant",
    )
    _enable_rls(schema, "leads")


def downgrade() -> None:
    cmd_kwargs = context.get_x_argument(as_dictionary=True)
    schema = cmd_kwargs.get("schema", "tenant")

    op.execute(f'DROP POLICY IF EXISTS tenant_isolation ON "{schema}".leads')
    op.drop_table("leads", schema="tenant")
    op.execute(f'DROP POLICY IF EXISTS users_update_self_or_service ON "{schema}".users')
    op.execute(f'DROP POLICY IF EXISTS tenant_isolation ON "{schema}".users')
    op.drop_table("users", schema="tenant")
