"""
Migration Runner - Applies pending Alembic migrations at startup.

Enabled with AUTO_MIGRATE=true. The revision check runs on the async
engine; the upgrade itself runs in a worker thread because alembic's
command API drives its own event loop through alembic/env.py.
"""

import asyncio
from pathlib import Path

from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def _alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return alembic_cfg


def _current_revision(conn: Connection) -> str | None:
    return MigrationContext.configure(conn).get_current_revision()


def head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    return ScriptDirectory.from_config(alembic_cfg).get_current_head()


async def current_revision(database_url: str) -> str | None:
    engine = create_async_engine(database_url)
    try:
        async with engine.connect() as conn:
            return await conn.run_sync(_current_revision)
    finally:
        await engine.dispose()


async def run_migrations(database_url: str) -> None:
    """
    Upgrade the database to head if it is behind.

    Raises:
        RuntimeError: If the upgrade fails; the application must not start
            against a half-migrated schema.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = _alembic_config(database_url)
    try:
        current = await current_revision(database_url)
        head = head_revision(alembic_cfg)

        if current == head:
            logger.info("database_schema_current", revision=current)
            return

        logger.info("database_migration_started", from_revision=current, to_revision=head)
        await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
        logger.info("database_migration_completed", revision=head)

    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
