from __future__ import annotations

import pytest

from signboard.persistence.db import SessionLocal
from signboard.services.cache import ResponseCache, build_cache_key
from signboard.services.telemetry import get_counter


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000_000

    def __call__(self) -> int:
        return self.now


def test_cache_key_sorts_params_and_flattens_path() -> None:
    assert build_cache_key("menuboard") == "menuboard"
    assert build_cache_key("menuboard/5/category") == "menuboard_5_category"
    assert build_cache_key("library", {"type": "image", "folderId": "3"}) == "library:folderId=3&type=image"
    assert build_cache_key("library", {"b": "2", "a": "1"}) == build_cache_key("library", {"a": "1", "b": "2"})


@pytest.mark.asyncio
async def test_entries_expire_lazily() -> None:
    clock = _Clock()
    cache = ResponseCache(SessionLocal, default_ttl_ms=1_000, time_source=clock)
    await cache.set("about", '{"version": "4"}')
    assert await cache.get("about") == '{"version": "4"}'

    clock.now += 1_000
    assert await cache.get("about") is None
    assert await cache.keys() == []
    assert get_counter("cms_cache_hit_total") == 1
    assert get_counter("cms_cache_miss_total") == 1


@pytest.mark.asyncio
async def test_invalidate_prefix_is_literal() -> None:
    cache = ResponseCache(SessionLocal)
    await cache.set("menuboard", "[]")
    await cache.set("menuboard_5_category", "[]")
    await cache.set("menuboardX", "[]")
    await cache.set("layout", "[]")

    await cache.invalidate_prefix("menuboard_")
    assert await cache.keys() == ["layout", "menuboard", "menuboardX"]

    await cache.invalidate_prefix("menuboard")
    assert await cache.keys() == ["layout"]


@pytest.mark.asyncio
async def test_invalidate_prefix_is_case_sensitive() -> None:
    cache = ResponseCache(SessionLocal)
    await cache.set("Layout_custom", "[]")
    await cache.set("layout", "[]")
    await cache.set("layout_7", "[]")

    await cache.invalidate_prefix("layout")
    assert await cache.keys() == ["Layout_custom"]


@pytest.mark.asyncio
async def test_set_overwrites_and_purge_removes_expired() -> None:
    clock = _Clock()
    cache = ResponseCache(SessionLocal, time_source=clock)
    await cache.set("a", "1", ttl_ms=10)
    await cache.set("a", "2", ttl_ms=100)
    await cache.set("b", "x", ttl_ms=10)
    clock.now += 50
    assert await cache.purge_expired() == 1
    assert await cache.get("a") == "2"

    await cache.invalidate_all()
    assert await cache.keys() == []
