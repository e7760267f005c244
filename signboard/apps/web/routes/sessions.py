from __future__ import annotations

from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_owner_or, with_owner_auth_form
from signboard.apps.web.context import get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.helpers import get_query_messages
from signboard.apps.web.responses import redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.services.auth.sessions import get_all_sessions, now_ms


async def handle_sessions_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        current = now_ms()
        active = [record for record in await get_all_sessions(request_db(request)) if record.expires >= current]
        return render(
            request,
            "admin/sessions.html",
            {"session": session, "session_count": len(active), **get_query_messages(request)},
        )

    return await require_owner_or(request, _handler)


async def handle_sessions_clear(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        await get_context(request).sessions.delete_others(request_db(request), session.token)
        return redirect_with_success("/admin/sessions", "Other sessions cleared")

    return await with_owner_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/sessions": handle_sessions_get,
        "POST /admin/sessions/clear": handle_sessions_clear,
    }
)
