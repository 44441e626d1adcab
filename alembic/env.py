"""Alembic environment for the RaidKeeper schema.

``DATABASE_URL`` (from the environment or ``.env``) wins over the
``sqlalchemy.url`` in alembic.ini, so the bot, the API and migrations all
point at the same database.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from alembic import context
from raidkeeper.database.models import Base

load_dotenv()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("DATABASE_URL is not set and alembic.ini has no sqlalchemy.url.")
    return url


def _skip_empty_autogenerate(context_, revision, directives) -> None:
    """Drop an ``alembic revision --autogenerate`` that found no model changes."""
    if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info("Models match the database; no revision written.")


_OPTIONS = dict(
    target_metadata=Base.metadata,
    # JSONB columns and BigInteger snowflakes must not drift silently
    compare_type=True,
    process_revision_directives=_skip_empty_autogenerate,
)


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Migrate the live database on a single unpooled connection."""
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    logger.info("Migrating %s", engine.url.render_as_string(hide_password=True))
    with engine.connect() as connection:
        context.configure(connection=connection, **_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
