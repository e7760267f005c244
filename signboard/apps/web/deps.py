from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from signboard.persistence.db import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def request_db(request: Request) -> AsyncSession:
    # The dispatch endpoint parks its request-scoped session on request.state.
    return request.state.db


def get_client_ip(request: Request) -> str:
    if request.client is not None and request.client.host:
        return request.client.host
    return "direct"
