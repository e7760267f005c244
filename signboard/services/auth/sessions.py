from __future__ import annotations

import asyncio
from dataclasses import dataclass
import time
from typing import Callable, Generic, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.core.config import get_settings
from signboard.domain.models import Session
from signboard.services.crypto.fields import generate_secure_token, wrap_key_with_token
from signboard.services.crypto.utils import sha256_b64


V = TypeVar("V")


@dataclass(frozen=True)
class SessionRecord:
    # Detached snapshot so cached entries never touch a closed AsyncSession.
    token_hash: str
    csrf_token: str
    expires: int
    wrapped_data_key: str | None
    user_id: int


def now_ms() -> int:
    return int(time.time() * 1000)


def hash_session_token(token: str) -> str:
    # SHA-256 for deterministic, non-reversible token storage.
    return sha256_b64(token)


class MemoryCache(Generic[V]):
    """Short-lived in-process lookup cache keyed by session token hash."""

    def __init__(self, ttl_s: float) -> None:
        self.ttl_s = ttl_s
        self._entries: dict[str, tuple[float, V]] = {}
        # Guards dict mutation only; concurrent misses may both hit the database.
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> V | None:
        now = time.monotonic()
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            cached_at, value = entry
            if now - cached_at <= self.ttl_s:
                return value
            self._entries.pop(key, None)
            return None

    async def put(self, key: str, value: V) -> None:
        if self.ttl_s <= 0:
            return
        async with self._lock:
            self._entries[key] = (time.monotonic(), value)

    async def pop(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


def _to_record(row: Session) -> SessionRecord:
    return SessionRecord(
        token_hash=row.token_hash,
        csrf_token=row.csrf_token,
        expires=row.expires,
        wrapped_data_key=row.wrapped_data_key,
        user_id=row.user_id,
    )


class SessionStore:
    """Session table access behind a short read cache.

    Every write clears the cache and notifies listeners, so derived caches
    (the auth-session cache) never serve a revoked or rewritten session.
    """

    def __init__(self, cache_ttl_s: float | None = None) -> None:
        ttl_s = get_settings().session_cache_ttl_s if cache_ttl_s is None else cache_ttl_s
        self.cache: MemoryCache[SessionRecord] = MemoryCache(ttl_s)
        self._listeners: list[Callable[[], None]] = []

    def on_invalidate(self, listener: Callable[[], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def invalidate(self) -> None:
        self.cache.clear()
        for listener in self._listeners:
            listener()

    async def create(
        self,
        db: AsyncSession,
        *,
        token: str,
        csrf_token: str,
        expires_ms: int,
        wrapped_data_key: str | None,
        user_id: int,
    ) -> SessionRecord:
        row = Session(
            token_hash=hash_session_token(token),
            csrf_token=csrf_token,
            expires=expires_ms,
            wrapped_data_key=wrapped_data_key,
            user_id=user_id,
        )
        db.add(row)
        await db.commit()
        return _to_record(row)

    async def create_new(self, db: AsyncSession, user_id: int, *, data_key: bytes | None = None) -> str:
        """Issue a session for ``user_id`` and return the raw cookie token.

        The data key, when present, is stored wrapped by the new token so only
        the cookie holder can recover it.
        """
        token = generate_secure_token()
        ttl_ms = get_settings().session_ttl_hours * 3600 * 1000
        await self.create(
            db,
            token=token,
            csrf_token=generate_secure_token(),
            expires_ms=now_ms() + ttl_ms,
            wrapped_data_key=wrap_key_with_token(data_key, token) if data_key is not None else None,
            user_id=user_id,
        )
        return token

    async def get(self, db: AsyncSession, token: str) -> SessionRecord | None:
        token_hash = hash_session_token(token)
        cached = await self.cache.get(token_hash)
        if cached is not None:
            return cached
        row = await db.get(Session, token_hash)
        if row is None:
            return None
        record = _to_record(row)
        await self.cache.put(token_hash, record)
        return record

    async def delete(self, db: AsyncSession, token: str) -> None:
        await db.execute(delete(Session).where(Session.token_hash == hash_session_token(token)))
        await db.commit()
        self.invalidate()

    async def delete_all(self, db: AsyncSession) -> None:
        # Used on password change: every device signs in again.
        await db.execute(delete(Session))
        await db.commit()
        self.invalidate()

    async def delete_others(self, db: AsyncSession, current_token: str) -> None:
        await db.execute(delete(Session).where(Session.token_hash != hash_session_token(current_token)))
        await db.commit()
        self.invalidate()

    async def delete_for_user(self, db: AsyncSession, user_id: int) -> None:
        await db.execute(delete(Session).where(Session.user_id == user_id))
        await db.commit()
        self.invalidate()


async def get_all_sessions(db: AsyncSession) -> list[SessionRecord]:
    result = await db.execute(select(Session).order_by(Session.expires.desc()))
    return [_to_record(row) for row in result.scalars().all()]
