"""Alembic environment for the lead import tables (async SQLAlchemy)."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, text
from sqlalchemy.ext.asyncio import async_engine_from_config

from academy_crm.core.config import get_settings

# Importing the package registers every model with Base.metadata
from academy_crm.models import AuditLog, CrmActivity, CrmLead, ImportJob, ImportRow  # noqa: F401
from academy_crm.models.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
settings = get_settings()


def _configure_kwargs(**kwargs: object) -> dict[str, object]:
    configure_kwargs: dict[str, object] = {"target_metadata": target_metadata, "compare_type": True, **kwargs}
    if settings.database_schema is not None:
        configure_kwargs["version_table_schema"] = settings.database_schema
    return configure_kwargs


def run_migrations_offline() -> None:
    """Emit migration SQL without a database connection."""
    context.configure(
        **_configure_kwargs(
            url=settings.database_url,
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:  # type: ignore[no-untyped-def]
    """Run migrations synchronously within a connection."""
    if settings.database_schema is not None:
        connection.execute(text(f'SET search_path TO "{settings.database_schema}", public'))
    context.configure(**_configure_kwargs(connection=connection))

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations over an async engine built from the application settings."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = settings.database_url

    connectable = async_engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        if settings.database_schema is not None:
            await connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{settings.database_schema}"'))
            await connection.commit()
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
