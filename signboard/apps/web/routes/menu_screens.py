"""Menu screens for business members.

A menu screen is a CMS layout generated from a layout template and the
business's products. The layout is built and published first; the local
row is written only once the CMS accepted it.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_session_or, with_auth_form
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import MenuScreenForm, parse_form
from signboard.apps.web.helpers import cms_then_persist, error_message, fetch_list, get_query_messages, with_cms_client
from signboard.apps.web.responses import forbidden, not_found, redirect_with_error, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.errors import CmsClientError
from signboard.domain.models import Business, Screen
from signboard.persistence.repos.businesses import (
    get_business_by_id,
    get_screen_by_id,
    is_user_assigned,
    to_display_business,
    to_display_screen,
)
from signboard.persistence.repos.menu_screens import (
    create_menu_screen,
    delete_menu_screen,
    get_menu_screen_by_id,
    get_menu_screens_for_screen,
    to_display_menu_screen,
)
from signboard.services.audit import record_event
from signboard.services.cms.client import CmsClient
from signboard.services.cms.layouts import (
    TEMPLATES,
    TemplateProduct,
    build_layout_from_template,
    get_template,
    parse_products,
    select_products,
)


ScreenHandler = Callable[[Business, Screen], Awaitable[Response]]


def menus_path(business_id: int, screen_id: int) -> str:
    return f"/dashboard/business/{business_id}/screen/{screen_id}/menus"


def _selected_product_ids(form: FormData) -> list[int]:
    # Checkbox group; anything that is not a row id is ignored.
    ids: list[int] = []
    for value in form.getlist("product_ids"):
        if isinstance(value, str) and value.strip().isdigit():
            ids.append(int(value))
    return ids


async def _with_member_screen(
    request: Request,
    session: AuthSession,
    params: RouteParams,
    handler: ScreenHandler,
) -> Response:
    # Membership of the business, not role, grants access; the screen must belong to it.
    db = request_db(request)
    business = await get_business_by_id(db, int(params["bizId"]))
    if business is None:
        return not_found(request, "Business")
    if not await is_user_assigned(db, business.id, session.user_id):
        return forbidden(request, "You do not have access to this business")
    screen = await get_screen_by_id(db, int(params["screenId"]))
    if screen is None or screen.business_id != business.id:
        return not_found(request, "Screen")
    return await handler(business, screen)


async def _fetch_products(client: CmsClient, dataset_id: int | None) -> tuple[list[TemplateProduct], str | None]:
    if dataset_id is None:
        return [], None
    rows, error = await fetch_list(client, f"dataset/data/{dataset_id}")
    return parse_products(rows), error


async def handle_menu_screens_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _render(business: Business, screen: Screen) -> Response:
            menu_screens = await get_menu_screens_for_screen(request_db(request), screen.id)
            return render(
                request,
                "user/menu_screens.html",
                {
                    "session": session,
                    "business": to_display_business(business),
                    "screen": to_display_screen(screen),
                    "menu_screens": [to_display_menu_screen(item) for item in menu_screens],
                    "templates": {template.id: template for template in TEMPLATES},
                    **get_query_messages(request),
                },
            )

        return await _with_member_screen(request, session, params, _render)

    return await require_session_or(request, _handler)


async def handle_menu_screen_create_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _render(business: Business, screen: Screen) -> Response:
            async def _with_client(client: CmsClient) -> Response:
                products, fetch_error = await _fetch_products(client, business.xibo_dataset_id)
                return render(
                    request,
                    "user/menu_screen_create.html",
                    {
                        "session": session,
                        "business": to_display_business(business),
                        "screen": to_display_screen(screen),
                        "templates": TEMPLATES,
                        "products": products,
                        "error": fetch_error,
                    },
                )

            return await with_cms_client(request, _with_client)

        return await _with_member_screen(request, session, params, _render)

    return await require_session_or(request, _handler)


async def handle_menu_screen_create_post(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        async def _create(business: Business, screen: Screen) -> Response:
            back = menus_path(business.id, screen.id)
            values, error = parse_form(MenuScreenForm, form)
            if values is None:
                return redirect_with_error(back, error or "Invalid form")
            template = get_template(values.template_id)
            if template is None:
                return redirect_with_error(back, "Invalid template")
            product_ids = _selected_product_ids(form)
            if len(product_ids) > template.max_products:
                return redirect_with_error(back, f"Too many products selected (max {template.max_products})")

            async def _build(client: CmsClient) -> int:
                products: list[TemplateProduct] = []
                if product_ids and business.xibo_dataset_id is not None:
                    rows = await client.get(f"dataset/data/{business.xibo_dataset_id}")
                    products = select_products(parse_products(rows), product_ids)
                return await build_layout_from_template(client, template, values.name, products)

            async def _persist(layout_id: int) -> Response:
                db = request_db(request)
                menu_screen = await create_menu_screen(
                    db,
                    name=values.name,
                    screen_id=screen.id,
                    template_id=template.id,
                    display_time=values.display_time,
                    sort_order=values.sort_order,
                    xibo_layout_id=layout_id,
                )
                await record_event(
                    session=db,
                    actor_user_id=session.user_id,
                    action="CREATE",
                    resource_type="menu_screen",
                    resource_id=menu_screen.id,
                    detail=f"Created menu screen {menu_screen.id} on screen {screen.id} with layout {layout_id}",
                )
                return redirect_with_success(back, "Menu screen created")

            return await with_cms_client(
                request,
                lambda client: cms_then_persist(lambda: _build(client), back, _persist),
            )

        return await _with_member_screen(request, session, params, _create)

    return await with_auth_form(request, _handler)


async def handle_menu_screen_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        async def _delete(business: Business, screen: Screen) -> Response:
            db = request_db(request)
            back = menus_path(business.id, screen.id)
            menu_screen = await get_menu_screen_by_id(db, int(params["id"]))
            if menu_screen is None or menu_screen.screen_id != screen.id:
                return redirect_with_error(back, "Menu screen not found")
            menu_screen_id, layout_id = menu_screen.id, menu_screen.xibo_layout_id

            async def _persist(_: object = None) -> Response:
                await delete_menu_screen(db, menu_screen_id)
                await record_event(
                    session=db,
                    actor_user_id=session.user_id,
                    action="DELETE",
                    resource_type="menu_screen",
                    resource_id=menu_screen_id,
                    detail=f"Deleted menu screen {menu_screen_id} from screen {screen.id}",
                )
                return redirect_with_success(back, "Menu screen deleted")

            if layout_id is None:
                return await _persist()

            async def _remove_layout(client: CmsClient) -> Response:
                try:
                    await client.delete(f"layout/{layout_id}")
                except CmsClientError as exc:
                    # Already gone in the CMS: only the local row is left to remove.
                    if exc.http_status != 404:
                        return redirect_with_error(back, error_message(exc))
                return await _persist()

            return await with_cms_client(request, _remove_layout)

        return await _with_member_screen(request, session, params, _delete)

    return await with_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /dashboard/business/:bizId/screen/:screenId/menus": handle_menu_screens_get,
        "GET /dashboard/business/:bizId/screen/:screenId/menu/create": handle_menu_screen_create_get,
        "POST /dashboard/business/:bizId/screen/:screenId/menu/create": handle_menu_screen_create_post,
        "POST /dashboard/business/:bizId/screen/:screenId/menu/:id/delete": handle_menu_screen_delete,
    }
)
