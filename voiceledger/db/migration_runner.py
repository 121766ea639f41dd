"""
Migration Runner - Applies pending Alembic migrations.

Alembic's command API is synchronous, so the asyncpg URL is converted to
psycopg2 for the duration of the upgrade.
"""

import logging
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

logger = logging.getLogger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def to_sync_url(database_url: str) -> str:
    """Convert an async driver URL into its synchronous equivalent."""
    return database_url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def _get_current_revision(engine: Engine) -> str | None:
    """Get the current database revision."""
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def _alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", to_sync_url(database_url).replace("%", "%%"))
    return alembic_cfg


def run_migrations(database_url: str) -> str | None:
    """
    Run pending Alembic migrations.

    Only runs migrations if there are pending ones. Returns the revision the
    database is at afterwards.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning(f"Alembic config not found at {ALEMBIC_INI_PATH}, skipping migrations")
        return None

    alembic_cfg = _alembic_config(database_url)
    engine = create_engine(to_sync_url(database_url))

    try:
        current = _get_current_revision(engine)
        head = _get_head_revision(alembic_cfg)

        if current == head:
            logger.info(f"Database schema is up to date (revision: {current})")
            return current

        logger.info(f"Running migrations from {current} to {head}")
        command.upgrade(alembic_cfg, "head")

        new_current = _get_current_revision(engine)
        logger.info(f"Migrations complete. Database now at revision: {new_current}")
        return new_current
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        raise RuntimeError(f"Database migration failed: {e}") from e
    finally:
        engine.dispose()
