from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.apps.web.deps import get_db
from signboard.core.logging import ErrorCode, log_error


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    db: str
    dbLatencyMs: float | None = None


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    # Liveness plus a round trip to storage; 503 when the database does not answer.
    started = time.monotonic()
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        log_error(logger, ErrorCode.DB_QUERY, "health check")
        payload = HealthResponse(status="error", db="error")
        return JSONResponse(payload.model_dump(), status_code=503)
    latency_ms = round((time.monotonic() - started) * 1000.0, 2)
    payload = HealthResponse(status="ok", db="ok", dbLatencyMs=latency_ms)
    return JSONResponse(payload.model_dump(), status_code=200)
