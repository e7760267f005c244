from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.domain.models import AuditEvent


async def list_events(
    session: AsyncSession,
    *,
    actor_user_id: int | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    offset: int = 0,
    limit: int = 100,
) -> list[AuditEvent]:
    stmt = select(AuditEvent)
    if actor_user_id is not None:
        stmt = stmt.where(AuditEvent.actor_user_id == actor_user_id)
    if action:
        stmt = stmt.where(AuditEvent.action == action)
    if resource_type:
        stmt = stmt.where(AuditEvent.resource_type == resource_type)
    stmt = stmt.order_by(AuditEvent.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
