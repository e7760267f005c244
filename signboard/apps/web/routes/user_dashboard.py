from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_session_or
from signboard.apps.web.deps import request_db
from signboard.apps.web.helpers import get_query_messages, load_cms_client
from signboard.apps.web.responses import forbidden, not_found, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.errors import CmsClientError
from signboard.persistence.repos.businesses import (
    get_business_by_id,
    get_businesses_for_user,
    get_screens_for_business,
    is_user_assigned,
    to_display_business,
    to_display_screen,
)
from signboard.services.cms.client import CmsClient


async def _count_products(client: CmsClient | None, dataset_id: int | None) -> int | None:
    if client is None or dataset_id is None:
        return None
    try:
        rows = await client.get(f"dataset/data/{dataset_id}")
    except CmsClientError:
        return None
    return len(rows) if isinstance(rows, list) else None


async def handle_dashboard_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        businesses = [
            to_display_business(b) for b in await get_businesses_for_user(request_db(request), session.user_id)
        ]
        return render(request, "user/dashboard.html", {"session": session, "businesses": businesses})

    return await require_session_or(request, _handler)


async def handle_business_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        # Membership, not role, grants access here.
        if not await is_user_assigned(db, business.id, session.user_id):
            return forbidden(request, "You do not have access to this business")
        screens = await get_screens_for_business(db, business.id)
        product_count = await _count_products(await load_cms_client(request), business.xibo_dataset_id)
        return render(
            request,
            "user/business.html",
            {
                "session": session,
                "business": to_display_business(business),
                "screen_count": len(screens),
                "screens": [to_display_screen(screen) for screen in screens],
                "product_count": product_count,
                **get_query_messages(request),
            },
        )

    return await require_session_or(request, _handler)


routes = define_routes(
    {
        "GET /dashboard": handle_dashboard_get,
        "GET /dashboard/business/:id": handle_business_get,
    }
)
