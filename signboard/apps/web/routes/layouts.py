from __future__ import annotations

from typing import Any

from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_session_or, with_auth_form
from signboard.apps.web.deps import request_db
from signboard.apps.web.helpers import cms_then_persist, fetch_list, get_query_messages, with_cms_client
from signboard.apps.web.responses import not_found, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.persistence.repos.activity import log_activity
from signboard.services.cms.client import CmsClient


LAYOUTS_PATH = "/admin/layouts"


async def handle_layouts_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            layouts, fetch_error = await fetch_list(client, "layout")
            messages = get_query_messages(request)
            return render(
                request,
                "admin/layouts.html",
                {
                    "session": session,
                    "layouts": layouts,
                    "error": messages["error"] or fetch_error,
                    "success": messages["success"],
                },
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_layout_detail(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        layout_id = params["id"]

        async def _with_client(client: CmsClient) -> Response:
            layouts = await client.get("layout", {"layoutId": layout_id})
            layout = next(
                (
                    item
                    for item in (layouts if isinstance(layouts, list) else [])
                    if isinstance(item, dict) and str(item.get("layoutId")) == layout_id
                ),
                None,
            )
            if layout is None:
                return not_found(request, "Layout")
            return render(request, "admin/layout_detail.html", {"session": session, "layout": layout})

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_layout_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        layout_id = params["id"]

        async def _persist(_: Any) -> Response:
            await log_activity(request_db(request), f"Deleted layout {layout_id}")
            return redirect_with_success(LAYOUTS_PATH, "Layout deleted")

        return await with_cms_client(
            request,
            lambda client: cms_then_persist(lambda: client.delete(f"layout/{layout_id}"), LAYOUTS_PATH, _persist),
        )

    return await with_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/layouts": handle_layouts_get,
        "GET /admin/layout/:id": handle_layout_detail,
        "POST /admin/layout/:id/delete": handle_layout_delete,
    }
)
