from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from signboard.core.config import get_settings
from signboard.domain.models import Base, Setting


logger = logging.getLogger(__name__)

# Bump when the schema changes so init_db re-runs table creation.
LATEST_UPDATE = "add menu screens table"
_SCHEMA_MARKER_KEY = "latest_db_update"


settings = get_settings()
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
if settings.database_url.startswith("sqlite"):
    # aiosqlite connections are handed between tasks on one loop.
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def _is_db_up_to_date() -> bool:
    # A missing settings table means a fresh database.
    try:
        async with SessionLocal() as session:
            result = await session.execute(select(Setting.value).where(Setting.key == _SCHEMA_MARKER_KEY))
            return result.scalar_one_or_none() == LATEST_UPDATE
    except SQLAlchemyError:
        return False


async def init_db() -> None:
    # Create missing tables, then record the schema marker.
    if await _is_db_up_to_date():
        return
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with SessionLocal() as session:
        existing = await session.get(Setting, _SCHEMA_MARKER_KEY)
        if existing is None:
            session.add(Setting(key=_SCHEMA_MARKER_KEY, value=LATEST_UPDATE))
        else:
            existing.value = LATEST_UPDATE
        await session.commit()
    logger.info("db_initialized marker=%s", LATEST_UPDATE)


async def reset_database() -> None:
    # Drop every table in dependency order.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
