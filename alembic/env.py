"""Alembic environment for the planpoker schema.

The database URL comes from ``-x url=...`` when given, otherwise from the
planpoker config (``database.url``), falling back to ``alembic.ini``.
"""

import asyncio
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from planpoker.config.loader import load_config
from planpoker.store.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_ASYNC_DRIVERS = {"aiosqlite", "asyncpg", "aiomysql"}


def _database_url() -> str:
    """Resolve the target URL with ``~`` expanded."""
    url = context.get_x_argument(as_dictionary=True).get("url")
    if not url:
        url = load_config().database.url or config.get_main_option("sqlalchemy.url")
    if url and ":///" in url:
        prefix, path = url.split(":///", 1)
        url = prefix + ":///" + str(Path(path).expanduser())
    return url or ""


def _section() -> dict[str, str]:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _database_url()
    return section


def run_migrations_offline() -> None:
    """Emit SQL without a live connection."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:  # type: ignore[no-untyped-def]
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations(section: dict[str, str]) -> None:
    connectable = async_engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Migrate over a sync or async driver, whichever the URL names."""
    section = _section()
    url = section["sqlalchemy.url"]

    if any(f"+{d}" in url for d in _ASYNC_DRIVERS):
        asyncio.run(run_async_migrations(section))
        return

    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        do_run_migrations(connection)
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
