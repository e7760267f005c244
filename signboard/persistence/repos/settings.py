from __future__ import annotations

import time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.core.config import get_settings
from signboard.domain.models import Setting
from signboard.services.crypto.fields import decrypt, encrypt


SETUP_COMPLETE = "setup_complete"
# CMS credentials are stored encrypted.
XIBO_API_URL = "xibo_api_url"
XIBO_CLIENT_ID = "xibo_client_id"
XIBO_CLIENT_SECRET = "xibo_client_secret"


# Whole-table snapshot; one query serves every read until the TTL lapses or a write lands.
_settings_cache: dict[str, str] | None = None
_settings_cached_at = 0.0
# Setup completion is permanent, so a positive answer is cached for the process lifetime.
_setup_confirmed = False


def invalidate_settings_cache() -> None:
    global _settings_cache
    _settings_cache = None


def clear_setup_complete_cache() -> None:
    global _setup_confirmed
    _setup_confirmed = False


async def load_all_settings(session: AsyncSession) -> dict[str, str]:
    global _settings_cache, _settings_cached_at
    result = await session.execute(select(Setting.key, Setting.value))
    _settings_cache = {key: value for key, value in result.all()}
    _settings_cached_at = time.monotonic()
    return _settings_cache


async def get_setting(session: AsyncSession, key: str) -> str | None:
    ttl_s = get_settings().settings_cache_ttl_s
    cache = _settings_cache
    if cache is None or time.monotonic() - _settings_cached_at >= ttl_s:
        cache = await load_all_settings(session)
    return cache.get(key)


async def set_setting(session: AsyncSession, key: str, value: str, *, commit: bool = True) -> None:
    await session.merge(Setting(key=key, value=value))
    if commit:
        await session.commit()
    invalidate_settings_cache()


async def is_setup_complete(session: AsyncSession) -> bool:
    global _setup_confirmed
    if _setup_confirmed:
        return True
    complete = await get_setting(session, SETUP_COMPLETE) == "true"
    if complete:
        _setup_confirmed = True
    return complete


async def _get_encrypted(session: AsyncSession, key: str) -> str | None:
    value = await get_setting(session, key)
    if not value:
        return None
    return decrypt(value)


async def get_cms_credentials(session: AsyncSession) -> tuple[str | None, str | None, str | None]:
    # Returns (api_url, client_id, client_secret), each None when unset.
    return (
        await _get_encrypted(session, XIBO_API_URL),
        await _get_encrypted(session, XIBO_CLIENT_ID),
        await _get_encrypted(session, XIBO_CLIENT_SECRET),
    )


async def update_cms_credentials(
    session: AsyncSession,
    *,
    api_url: str,
    client_id: str,
    client_secret: str,
) -> None:
    # Blank values are skipped so the stored secret survives a partial form.
    for key, value in (
        (XIBO_API_URL, api_url),
        (XIBO_CLIENT_ID, client_id),
        (XIBO_CLIENT_SECRET, client_secret),
    ):
        if value:
            await set_setting(session, key, encrypt(value), commit=False)
    await session.commit()
    invalidate_settings_cache()

