from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from pathlib import Path

import anyio
from alembic import command
from alembic.config import Config
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()
engine = create_async_engine(settings.database_url, echo=False, future=True, pool_pre_ping=True)
# Handlers keep reading invoices and users after their unit of work commits.
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def ledger_migration_config() -> Config:
    """Alembic config pointed at the ledger database, bypassing the pooler when one is set."""
    config = Config(str(ALEMBIC_INI))
    config.set_main_option(
        "sqlalchemy.url", settings.direct_database_url or settings.database_url
    )
    return config


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield one ledger session per API request."""
    async with SessionLocal() as session:
        yield session


async def migrate_ledger_schema() -> None:
    if not settings.auto_run_migrations:
        logger.info("Ledger schema left as is (AUTO_RUN_MIGRATIONS is off)")
        return
    logger.info("Upgrading ledger schema to the latest revision")
    await anyio.to_thread.run_sync(command.upgrade, ledger_migration_config(), "head")
