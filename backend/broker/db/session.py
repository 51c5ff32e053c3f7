"""Database engine, sessions and schema bootstrap."""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from broker.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

# Services flush explicitly before reading back what they wrote
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def run_migrations() -> None:
    """Upgrade the schema to the latest Alembic revision.

    Blocking; the alembic environment starts its own event loop, so call
    this from a worker thread when an event loop is already running.
    """
    from alembic import command
    from alembic.config import Config

    backend_dir = Path(__file__).resolve().parents[2]
    alembic_ini = backend_dir / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning(f"alembic.ini not found at {alembic_ini}, skipping migrations")
        return

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(backend_dir / "alembic"))
    logger.info("Upgrading broker schema to head")
    command.upgrade(config, "head")


async def init_db() -> None:
    """Create missing tables in debug mode.

    Production schemas come from ``alembic upgrade head`` (or
    ``RUN_MIGRATIONS_ON_STARTUP``); this only keeps a fresh development
    database usable.
    """
    if not settings.debug:
        return

    from broker.models import Base

    async with engine.begin() as conn:
        logger.info("Debug mode: creating missing tables")
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
