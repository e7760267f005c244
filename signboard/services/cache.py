from __future__ import annotations

import logging
import time
from typing import Callable, Mapping
from urllib.parse import urlencode

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signboard.domain.models import CacheEntry
from signboard.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

# Mutations invalidate their entity family, so a long TTL is safe.
DEFAULT_CACHE_TTL_MS = 600_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_cache_key(endpoint: str, params: Mapping[str, str] | None = None) -> str:
    # Sorted query strings keep distinct parameter sets from colliding.
    base = endpoint.replace("/", "_")
    if not params:
        return base
    return f"{base}:{urlencode(sorted(params.items()))}"


class ResponseCache:
    """Database-backed TTL cache for remote API responses.

    Entries expire lazily: a read past ``expires`` deletes the row and
    reports a miss. Values are opaque strings (JSON text in practice).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        default_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        time_source: Callable[[], int] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._default_ttl_ms = default_ttl_ms
        self._now = time_source or _now_ms

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            entry = await session.get(CacheEntry, key)
            if entry is None:
                increment_counter("cms_cache_miss_total")
                return None
            if self._now() >= entry.expires:
                await session.execute(delete(CacheEntry).where(CacheEntry.key == key))
                await session.commit()
                increment_counter("cms_cache_miss_total")
                return None
            increment_counter("cms_cache_hit_total")
            return entry.value

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> None:
        expires = self._now() + (self._default_ttl_ms if ttl_ms is None else ttl_ms)
        async with self._session_factory() as session:
            await session.merge(CacheEntry(key=key, value=value, expires=expires))
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(CacheEntry).where(CacheEntry.key == key))
            await session.commit()

    async def invalidate_prefix(self, prefix: str) -> None:
        # Byte-exact prefix: SQLite LIKE folds ASCII case and treats "_" as a wildcard.
        async with self._session_factory() as session:
            await session.execute(
                delete(CacheEntry).where(func.substr(CacheEntry.key, 1, len(prefix)) == prefix)
            )
            await session.commit()
        logger.debug("cache_invalidated prefix=%s", prefix)

    async def invalidate_all(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(CacheEntry))
            await session.commit()

    async def purge_expired(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(CacheEntry).where(CacheEntry.expires <= self._now()))
            await session.commit()
            return int(result.rowcount or 0)

    async def keys(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(CacheEntry.key).order_by(CacheEntry.key))
            return list(result.scalars().all())
