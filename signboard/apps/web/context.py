from __future__ import annotations

from dataclasses import dataclass, field

import httpx
from starlette.requests import Request

from signboard.core.config import get_settings
from signboard.persistence.db import SessionLocal
from signboard.services.auth.sessions import MemoryCache, SessionStore
from signboard.services.cache import ResponseCache
from signboard.services.cms.client import CmsClient
from signboard.services.cms.types import CmsConfig, TokenStore
from signboard.services.resilience import (
    CircuitBreaker,
    RetryPolicy,
    default_breaker_config,
    default_retry_policy,
)


@dataclass
class AppContext:
    """Per-process state shared by request handlers.

    The breaker, token store, response cache and session caches live here
    instead of in module globals so each app instance (and each test)
    starts clean.
    """

    cache: ResponseCache = field(default_factory=lambda: ResponseCache(SessionLocal))
    breaker: CircuitBreaker = field(
        default_factory=lambda: CircuitBreaker("cms", config=default_breaker_config())
    )
    tokens: TokenStore = field(default_factory=TokenStore)
    retry_policy: RetryPolicy = field(default_factory=default_retry_policy)
    # Tests inject a MockTransport-backed client; production opens one per call.
    http_client: httpx.AsyncClient | None = None
    sessions: SessionStore = field(default_factory=SessionStore)
    # AuthSession snapshots keyed by token hash; cleared on every session write.
    auth_sessions: MemoryCache = field(
        default_factory=lambda: MemoryCache(get_settings().auth_session_cache_ttl_s)
    )

    def __post_init__(self) -> None:
        self.sessions.on_invalidate(self.auth_sessions.clear)

    def client_for(self, config: CmsConfig) -> CmsClient:
        return CmsClient(
            config,
            cache=self.cache,
            breaker=self.breaker,
            tokens=self.tokens,
            retry_policy=self.retry_policy,
            http_client=self.http_client,
        )

    async def forget_cms_state(self) -> None:
        # Credentials changed: old token and cached responses belong to the old CMS.
        self.tokens.clear()
        self.breaker.reset()
        await self.cache.invalidate_all()


def get_context(request: Request) -> AppContext:
    return request.app.state.context
