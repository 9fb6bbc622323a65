"""Alembic environment for multi-tenant schema migrations.

Two migration modes via -x argument:
  alembic -x schema=shared upgrade shared@head        -- tenants registry
  alembic -x schema=tenant_acme upgrade tenant@head   -- one tenant schema

Each schema keeps its own alembic_version table so tenants are migrated
independently. Tenant migrations are written against the "tenant"
placeholder schema, remapped here with schema_translate_map.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

import src.crm.meetings.models  # noqa: F401  (registers meeting tables on TenantBase)
import src.crm.models.shared  # noqa: F401
import src.crm.models.tenant  # noqa: F401
from src.crm.config import get_settings
from src.crm.core.database import SharedBase, TenantBase

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

cmd_kwargs = context.get_x_argument(as_dictionary=True)
target_schema = cmd_kwargs.get("schema", "shared")
is_shared = target_schema == "shared"

target_metadata = SharedBase.metadata if is_shared else TenantBase.metadata


def _sync_url() -> str:
    """Alembic runs synchronously; strip the asyncpg driver from DATABASE_URL."""
    return get_settings().DATABASE_URL.replace("+asyncpg", "")


def run_migrations_offline() -> None:
    """Emit SQL for the target schema without connecting."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=target_schema,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations to the target schema."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        # The version table lives in the target schema, so it must exist first
        connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{target_schema}"'))
        connection.commit()

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=target_schema,
            include_schemas=True,
            schema_translate_map=None if is_shared else {"tenant": target_schema},
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
