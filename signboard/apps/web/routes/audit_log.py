from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_owner_or
from signboard.apps.web.deps import request_db
from signboard.apps.web.router import RouteParams, define_routes
from signboard.apps.web.responses import render
from signboard.persistence.repos.activity import get_all_activity_log
from signboard.persistence.repos.audit import list_events
from signboard.services.audit import AUDIT_ACTIONS, AUDIT_RESOURCE_TYPES

_PAGE_SIZE = 100


async def handle_audit_log_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        db = request_db(request)
        # Unknown filter values are ignored rather than rejected.
        action = request.query_params.get("action") or None
        resource_type = request.query_params.get("resource_type") or None
        events = await list_events(
            db,
            action=action if action in AUDIT_ACTIONS else None,
            resource_type=resource_type if resource_type in AUDIT_RESOURCE_TYPES else None,
            limit=_PAGE_SIZE,
        )
        activity = await get_all_activity_log(db, limit=_PAGE_SIZE)
        return render(
            request,
            "admin/audit_log.html",
            {
                "session": session,
                "events": events,
                "activity": activity,
                "actions": sorted(AUDIT_ACTIONS),
                "resource_types": sorted(AUDIT_RESOURCE_TYPES),
                "selected_action": action,
                "selected_resource_type": resource_type,
            },
        )

    return await require_owner_or(request, _handler)


routes = define_routes(
    {
        "GET /admin/audit-log": handle_audit_log_get,
    }
)
