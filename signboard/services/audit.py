from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.domain.models import AuditEvent


logger = logging.getLogger(__name__)

AUDIT_ACTIONS = frozenset(
    {
        "LOGIN",
        "LOGOUT",
        "LOGIN_FAILED",
        "CREATE",
        "UPDATE",
        "DELETE",
        "PUBLISH",
        "IMPERSONATE",
        "STOP_IMPERSONATE",
    }
)
AUDIT_RESOURCE_TYPES = frozenset(
    {"business", "screen", "menu_screen", "user", "media", "menuboard", "session", "settings"}
)


async def record_event(
    *,
    session: AsyncSession,
    actor_user_id: int,
    action: str,
    resource_type: str,
    detail: str,
    resource_id: str | int | None = None,
    best_effort: bool = True,
) -> None:
    # Append-only audit rows; best-effort writes never break the user flow.
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    if resource_type not in AUDIT_RESOURCE_TYPES:
        raise ValueError(f"Unknown audit resource type: {resource_type}")
    event = AuditEvent(
        created=datetime.now(timezone.utc).isoformat(),
        actor_user_id=actor_user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        detail=detail,
    )
    try:
        session.add(event)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        if not best_effort:
            raise
        logger.warning(
            "audit_event_write_failed action=%s resource_type=%s",
            action,
            resource_type,
            exc_info=exc,
        )
