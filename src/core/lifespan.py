import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from psycopg import errors as pg_errors

from core.config import settings
from core.database import engine, pool
from core.logger import setup_logging
from core.observability import shutdown_langfuse
from services.background import BackgroundTaskRegistry

logger = logging.getLogger(__name__)

BASE_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def run_migrations():
    """Run Alembic migrations programmatically (synchronous)."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(BASE_PATH, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(BASE_PATH, "alembic"))
    # Keep the JSON logging set up by setup_logging()
    alembic_cfg.attributes["configure_logger"] = False

    command.upgrade(alembic_cfg, "head")
    logger.info("Alembic migrations applied successfully.")


def _schema_already_exists(exc: Exception) -> bool:
    """True when the migration failed only because its tables or indexes are already there."""
    orig = getattr(exc, "orig", exc)
    return isinstance(orig, (pg_errors.DuplicateTable, pg_errors.DuplicateObject))


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)

    # Startup: Open DB pool
    await pool.open()

    # Run Alembic Migrations (in thread pool since it's sync)
    try:
        await asyncio.get_running_loop().run_in_executor(None, run_migrations)
    except Exception as e:
        if not _schema_already_exists(e):
            logger.exception(f"Migration failed: {e}")
            await pool.close()
            raise
        logger.warning(f"Migration skipped, schema already exists: {e}")

    yield

    # Shutdown: drop pending title jobs, then close DB resources
    registry = BackgroundTaskRegistry.get_instance()
    pending = registry.pending()
    if pending:
        logger.info(f"Cancelling {pending} pending background task(s)")
    await registry.cancel_all()
    await pool.close()
    await engine.dispose()

    shutdown_langfuse()
