from __future__ import annotations

from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine, pool

from billsplit.config import get_settings

VERSION_TABLE = "billsplit_alembic_version"

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _configure(**options: Any) -> None:
    # the schema is hand-written in versions/, nothing to autogenerate against
    context.configure(target_metadata=None, version_table=VERSION_TABLE, transaction_per_migration=True, **options)


def run_migrations_offline() -> None:
    _configure(url=get_settings().sync_database_url, literal_binds=True)

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(get_settings().sync_database_url, poolclass=pool.NullPool)

    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
