"""Alembic environment for Clean Cloud.

The database URL comes from CLEAN_DB_URL (via CleanSettings) unless
overridden with ``alembic -x sqlalchemy.url=...``. Migrations run over the
same async driver the service uses.
"""

import asyncio
import sys
from pathlib import Path
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

# Ensure src/ is on sys.path for editable installs
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from clean_cloud.common.config import get_settings
from clean_cloud.common.models import Base

# Import all models so they register with Base.metadata
import clean_cloud.orgs.models  # noqa: F401
import clean_cloud.tunnels.models  # noqa: F401

config = context.config

cmd_url = context.get_x_argument(as_dictionary=True).get("sqlalchemy.url")
config.set_main_option("sqlalchemy.url", cmd_url or get_settings().db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        # SQLite cannot ALTER most constraints in place.
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with engine.connect() as connection:
        await connection.run_sync(_configure)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
