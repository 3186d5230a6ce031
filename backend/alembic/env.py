import asyncio
from logging.config import fileConfig

from sqlalchemy.engine import Connection

from alembic import context

from upgrade_state.core.db import Base, build_engine
from upgrade_state.core.settings import get_settings, normalize_database_url

# Import models to ensure they are registered
import upgrade_state.models  # noqa: F401

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# DATABASE_URL / config.json win over the ini file
db_url = get_settings().database.url
if db_url:
    config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _configured_url() -> str:
    url = normalize_database_url(config.get_main_option("sqlalchemy.url"))
    if not url:
        raise RuntimeError("No database URL configured: set DATABASE_URL or sqlalchemy.url in alembic.ini")
    return url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Emits SQL to the script output instead of touching a database.
    """
    context.configure(
        url=_configured_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    # build_engine moves sslmode into connect_args for asyncpg
    connectable = build_engine(_configured_url())

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""

    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
