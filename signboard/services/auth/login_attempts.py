from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.core.config import get_settings
from signboard.domain.models import LoginAttempt
from signboard.services.auth.sessions import now_ms
from signboard.services.crypto.fields import hmac_hash


def _ip_key(ip: str) -> str:
    # Client IPs are personal data; store only a keyed hash.
    return hmac_hash(f"ip:{ip}")


async def is_login_rate_limited(db: AsyncSession, ip: str) -> bool:
    row = await db.get(LoginAttempt, _ip_key(ip))
    if row is None or row.locked_until is None:
        return False
    if row.locked_until > now_ms():
        return True
    # Lockout elapsed; start counting from zero again.
    await db.execute(delete(LoginAttempt).where(LoginAttempt.ip == row.ip))
    await db.commit()
    return False


async def record_failed_login(db: AsyncSession, ip: str) -> bool:
    """Count a failed login; returns True when this failure triggers a lockout."""
    settings = get_settings()
    key = _ip_key(ip)
    row = await db.get(LoginAttempt, key)
    attempts = (row.attempts if row is not None else 0) + 1
    if attempts >= settings.login_max_attempts:
        locked_until = now_ms() + settings.login_lockout_minutes * 60 * 1000
        await db.merge(LoginAttempt(ip=key, attempts=0, locked_until=locked_until))
        await db.commit()
        return True
    await db.merge(LoginAttempt(ip=key, attempts=attempts, locked_until=None))
    await db.commit()
    return False


async def clear_login_attempts(db: AsyncSession, ip: str) -> None:
    await db.execute(delete(LoginAttempt).where(LoginAttempt.ip == _ip_key(ip)))
    await db.commit()
