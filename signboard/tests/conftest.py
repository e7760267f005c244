from __future__ import annotations

import base64
import os
from pathlib import Path
import tempfile

# Settings are read at import time, so the environment is prepared first.
_DB_DIR = tempfile.mkdtemp(prefix="signboard-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}")
os.environ.setdefault("DB_ENCRYPTION_KEY", base64.b64encode(b"k" * 32).decode("ascii"))
os.environ.setdefault("ALLOWED_DOMAIN", "test")
os.environ.setdefault("LOGIN_DELAY_ENABLED", "false")
os.environ.setdefault("PBKDF2_ITERATIONS", "1000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

from signboard.apps.web.context import AppContext
from signboard.apps.web.main import create_app
from signboard.domain.models import Base, Setting
from signboard.persistence.db import SessionLocal, engine, init_db
from signboard.persistence.repos.settings import clear_setup_complete_cache, invalidate_settings_cache
from signboard.services.cache import ResponseCache
from signboard.services.resilience import CircuitBreaker, CircuitBreakerConfig, RetryPolicy
from signboard.services.telemetry import reset_telemetry


BASE_URL = "https://test"


@pytest.fixture(autouse=True)
async def clean_database() -> None:
    # Fresh schema rows and empty process caches for every test.
    await init_db()
    async with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            if table.name != Setting.__tablename__:
                await session.execute(delete(table))
        # Keep the schema marker so init_db stays a no-op.
        await session.execute(delete(Setting).where(Setting.key != "latest_db_update"))
        await session.commit()
    invalidate_settings_cache()
    clear_setup_complete_cache()
    reset_telemetry()
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture
def cms_handler():
    # Tests replace .handler to script CMS responses.
    class _Router:
        def __init__(self) -> None:
            self.requests: list[httpx.Request] = []
            self.handler = lambda request: httpx.Response(404, json={"message": "not found"})

        def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

    return _Router()


@pytest.fixture
def app_context(cms_handler) -> AppContext:
    return AppContext(
        cache=ResponseCache(SessionLocal),
        breaker=CircuitBreaker("cms", config=CircuitBreakerConfig(failure_threshold=5, recovery_seconds=30)),
        retry_policy=RetryPolicy(delays_ms=()),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(cms_handler)),
    )


@pytest.fixture
async def client(app_context: AppContext):
    app = create_app(app_context)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=BASE_URL) as http_client:
        yield http_client
    await app_context.http_client.aclose()
