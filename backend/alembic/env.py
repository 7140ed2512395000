import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from flight_tracker.config import get_settings
from flight_tracker.database import Base
from flight_tracker import models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

DB_URL = config.get_main_option("sqlalchemy.url") or get_settings().database_url


def run_migrations_offline():
    context.configure(
        url=DB_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        {"sqlalchemy.url": DB_URL},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


logger.info(f"Running migrations against {DB_URL.split('@')[-1]}")
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
