from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_manager_or_above, with_manager_auth_form
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import ScreenForm, parse_form
from signboard.apps.web.helpers import fetch_list, load_cms_client
from signboard.apps.web.responses import not_found, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.domain.models import Business
from signboard.persistence.repos.businesses import (
    create_screen,
    delete_screen,
    get_assigned_display_ids,
    get_business_by_id,
    get_screen_by_id,
    to_display_business,
)
from signboard.services.audit import record_event


async def _available_displays(request: Request, db: AsyncSession) -> tuple[list[dict[str, Any]], str | None]:
    # Displays already bound to a screen are hidden from the picker.
    client = await load_cms_client(request)
    if client is None:
        return [], None
    displays, error = await fetch_list(client, "display")
    if error is not None:
        return [], error
    assigned = await get_assigned_display_ids(db)
    return [d for d in displays if isinstance(d, dict) and d.get("displayId") not in assigned], None


async def _create_page(
    request: Request,
    db: AsyncSession,
    session: AuthSession,
    business: Business,
    *,
    error: str | None = None,
    status_code: int = 200,
) -> Response:
    displays, fetch_error = await _available_displays(request, db)
    return render(
        request,
        "admin/screen_create.html",
        {
            "session": session,
            "business": to_display_business(business),
            "displays": displays,
            "error": error or fetch_error,
        },
        status_code=status_code,
    )


async def handle_screen_create_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        return await _create_page(request, db, session, business)

    return await require_manager_or_above(request, _handler)


async def handle_screen_create_post(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        values, error = parse_form(ScreenForm, form)
        if values is None:
            return await _create_page(request, db, session, business, error=error, status_code=400)

        screen = await create_screen(
            db,
            business_id=business.id,
            name=values.name,
            xibo_display_id=values.xibo_display_id or None,
        )
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="CREATE",
            resource_type="screen",
            resource_id=screen.id,
            detail=f'Created screen "{values.name}" for business {business.id}',
        )
        return redirect_with_success(f"/admin/business/{business.id}", "Screen created")

    return await with_manager_auth_form(request, _handler)


async def handle_screen_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        business_id = int(params["businessId"])
        if await get_business_by_id(db, business_id) is None:
            return not_found(request, "Business")
        screen = await get_screen_by_id(db, int(params["id"]))
        if screen is None or screen.business_id != business_id:
            return not_found(request, "Screen")

        screen_id = screen.id
        await delete_screen(db, screen_id)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="DELETE",
            resource_type="screen",
            resource_id=screen_id,
            detail=f"Deleted screen {screen_id} from business {business_id}",
        )
        return redirect_with_success(f"/admin/business/{business_id}", "Screen deleted")

    return await with_manager_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/business/:id/screen/create": handle_screen_create_get,
        "POST /admin/business/:id/screen/create": handle_screen_create_post,
        "POST /admin/business/:businessId/screen/:id/delete": handle_screen_delete,
    }
)
