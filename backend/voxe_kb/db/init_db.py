"""
Database initialisation
"""

import asyncio

import structlog
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from voxe_kb.db.database import engine
from voxe_kb.db.models import Base

logger = structlog.get_logger(__name__)


async def _wait_for_db_ready(max_wait_seconds: float = 60):
    """Wait for a networked database to accept connections (container start races)."""
    if engine.dialect.name == "sqlite":
        return

    delay = 0.5
    remaining = max_wait_seconds
    attempts = 0
    while remaining > 0:
        attempts += 1
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database ready", attempts=attempts)
            return
        except OperationalError as e:
            logger.warning(
                "Database not ready yet, retrying",
                attempts=attempts,
                next_delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
            remaining -= delay
            delay = min(delay * 2, 5.0)

    raise RuntimeError("Database not ready after waiting")


def create_tables():
    Base.metadata.create_all(bind=engine)


async def init_db():
    """Create tables if they do not exist yet."""
    logger.info("Initialising database", dialect=engine.dialect.name)
    await _wait_for_db_ready()
    create_tables()
    logger.info("Database initialised", tables=sorted(Base.metadata.tables.keys()))
