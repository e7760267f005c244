from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, get_authenticated_session
from signboard.apps.web.helpers import load_cms_client
from signboard.apps.web.responses import redirect, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.services.auth.roles import AdminLevel
from signboard.services.cms.types import DashboardStatus


def login_response(request: Request, error: str | None = None, status_code: int = 200) -> Response:
    return render(request, "login.html", {"error": error}, status_code=status_code)


async def _dashboard(request: Request, session: AuthSession) -> Response:
    # Plain users have no admin surface; their home is the business dashboard.
    if session.admin_level == AdminLevel.USER:
        return redirect("/dashboard")
    client = await load_cms_client(request)
    status = await client.get_dashboard_status() if client is not None else DashboardStatus(connected=False)
    return render(
        request,
        "admin/dashboard.html",
        {"session": session, "status": status, "configured": client is not None},
    )


async def handle_admin_get(request: Request, params: RouteParams) -> Response:
    session = await get_authenticated_session(request)
    if session is None:
        return login_response(request)
    return await _dashboard(request, session)


routes = define_routes(
    {
        "GET /admin": handle_admin_get,
    }
)
