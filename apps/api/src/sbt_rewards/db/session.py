from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sbt_rewards.core.settings import settings
from sbt_rewards.db.base import Base

engine = create_async_engine(settings.database_url, future=True)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models() -> None:
    """Create ledger tables when running without Alembic (local-first installs)."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
