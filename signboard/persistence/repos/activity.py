from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.domain.models import ActivityLogEntry


async def log_activity(session: AsyncSession, message: str) -> None:
    # Plain-text, owner-only operational trail.
    session.add(ActivityLogEntry(created=datetime.now(timezone.utc).isoformat(), message=message))
    await session.commit()


async def get_all_activity_log(session: AsyncSession, *, limit: int = 100) -> list[ActivityLogEntry]:
    result = await session.execute(
        select(ActivityLogEntry).order_by(ActivityLogEntry.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
