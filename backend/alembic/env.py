"""
Alembic migration environment.

The database URL comes from frontbase.config (the same DATABASE_URL the
API uses) unless the caller already put one in the Alembic config, which
is how tests point migrations at a scratch database.

Migrations run on a plain synchronous engine: they are started from the
FastAPI lifespan, where the event loop is already running.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from frontbase.config import DATABASE_URL
from frontbase.models import Base

ASYNC_DRIVERS = ("+aiosqlite", "+asyncpg")

config = context.config
target_metadata = Base.metadata

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def sync_url(url: str) -> str:
    for driver in ASYNC_DRIVERS:
        url = url.replace(driver, "")
    return url


def database_url() -> str:
    return sync_url(config.get_main_option("sqlalchemy.url") or DATABASE_URL)


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(database_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        # SQLite can only alter tables through batch (copy-and-move) mode.
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
