"""Top-level HTML dispatch.

Order: ``/setup*`` routes, then a redirect to ``/setup`` until setup is
complete, ``GET /`` to ``/admin``, then the ``/join``, ``/admin`` and
``/dashboard`` route tables, otherwise a 404 page.
"""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.deps import request_db
from signboard.apps.web.responses import not_found, redirect
from signboard.apps.web.router import Router, create_router, normalize_path
from signboard.apps.web.routes import (
    audit_log,
    auth,
    businesses,
    dashboard,
    datasets,
    impersonation,
    join,
    layouts,
    media,
    menu_screens,
    menuboards,
    screens,
    sessions,
    settings,
    setup,
    user_dashboard,
    users,
)
from signboard.persistence.repos.settings import is_setup_complete


setup_router = create_router(setup.routes)
join_router = create_router(join.routes)
admin_router = create_router(
    {
        **auth.routes,
        **dashboard.routes,
        **settings.routes,
        **sessions.routes,
        **users.routes,
        **impersonation.routes,
        **businesses.routes,
        **screens.routes,
        **menuboards.routes,
        **media.routes,
        **layouts.routes,
        **datasets.routes,
        **audit_log.routes,
    }
)
user_router = create_router({**user_dashboard.routes, **menu_screens.routes})

_PREFIXED_ROUTERS: tuple[tuple[str, Router], ...] = (
    ("/join", join_router),
    ("/admin", admin_router),
    ("/dashboard", user_router),
)


def matches_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(f"{prefix}/")


async def dispatch(request: Request) -> Response:
    path = normalize_path(request.url.path)
    method = request.method.upper()

    if matches_prefix(path, "/setup"):
        response = await setup_router(request, path, method)
        if response is not None:
            return response

    if not await is_setup_complete(request_db(request)):
        return redirect("/setup")

    if path == "/" and method == "GET":
        return redirect("/admin")

    for prefix, router in _PREFIXED_ROUTERS:
        if matches_prefix(path, prefix):
            response = await router(request, path, method)
            if response is not None:
                return response
    return not_found(request)
