from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_session_or, with_auth_form
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import CategoryForm, MenuBoardForm, ProductForm, parse_form
from signboard.apps.web.helpers import cms_then_persist, fetch_list, get_query_messages, with_cms_client
from signboard.apps.web.responses import not_found, redirect_with_error, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.errors import CmsClientError
from signboard.persistence.repos.activity import log_activity
from signboard.services.cms.client import CmsClient


MENUBOARDS_PATH = "/admin/menuboards"

Board = dict[str, Any]
Category = dict[str, Any]


def _board_path(board_id: int | str) -> str:
    return f"/admin/menuboard/{board_id}"


def _board_body(values: MenuBoardForm) -> dict[str, Any]:
    return {"name": values.name, "code": values.code, "description": values.description}


def _category_body(values: CategoryForm) -> dict[str, Any]:
    body: dict[str, Any] = {"name": values.name, "code": values.code}
    if values.media_id:
        body["mediaId"] = values.media_id
    return body


def _product_body(category_id: int, values: ProductForm) -> dict[str, Any]:
    body: dict[str, Any] = {
        "menuCategoryId": category_id,
        "name": values.name,
        "price": values.price,
        "description": values.description,
        "calories": values.calories,
        "allergyInfo": values.allergy_info,
        "availability": values.availability,
    }
    if values.media_id:
        body["mediaId"] = values.media_id
    return body


def _find_by_id(items: list[Any], key: str, item_id: int) -> dict[str, Any] | None:
    return next((item for item in items if isinstance(item, dict) and str(item.get(key)) == str(item_id)), None)


async def _find_board(client: CmsClient, board_id: int) -> Board | None:
    boards = await client.get("menuboards", {"menuId": str(board_id)})
    return _find_by_id(boards if isinstance(boards, list) else [], "menuId", board_id)


async def _fetch_categories(client: CmsClient, board_id: int) -> list[Category]:
    categories = await client.get(f"menuboard/{board_id}/categories")
    return [c for c in categories if isinstance(c, dict)] if isinstance(categories, list) else []


async def _fetch_products(client: CmsClient, category_id: int) -> list[dict[str, Any]]:
    products = await client.get(f"menuboard/{category_id}/products")
    return [p for p in products if isinstance(p, dict)] if isinstance(products, list) else []


async def _with_board(
    request: Request,
    client: CmsClient,
    board_id: int,
    handler: Callable[[Board], Awaitable[Response]],
) -> Response:
    board = await _find_board(client, board_id)
    if board is None:
        return not_found(request, "Menu board")
    return await handler(board)


async def _with_board_category(
    request: Request,
    client: CmsClient,
    board_id: int,
    category_id: int,
    handler: Callable[[Board, Category], Awaitable[Response]],
) -> Response:
    async def _with_category(board: Board) -> Response:
        category = _find_by_id(await _fetch_categories(client, board_id), "menuCategoryId", category_id)
        if category is None:
            return not_found(request, "Category")
        return await handler(board, category)

    return await _with_board(request, client, board_id, _with_category)


async def _mutate_then_log(
    request: Request,
    api_call: Callable[[CmsClient], Awaitable[Any]],
    path: str,
    log_message: str,
    success_message: str,
) -> Response:
    # Remote write first; the activity entry is recorded only when it succeeded.
    async def _persist(_: Any) -> Response:
        await log_activity(request_db(request), log_message)
        return redirect_with_success(path, success_message)

    return await with_cms_client(
        request,
        lambda client: cms_then_persist(lambda: api_call(client), path, _persist),
    )


async def handle_menuboards_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            boards, fetch_error = await fetch_list(client, "menuboards")
            messages = get_query_messages(request)
            return render(
                request,
                "admin/menuboards.html",
                {
                    "session": session,
                    "boards": boards,
                    "error": messages["error"] or fetch_error,
                    "success": messages["success"],
                },
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_menuboard_new(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        return render(request, "admin/menuboard_form.html", {"session": session, "board": None})

    return await require_session_or(request, _handler)


async def handle_menuboard_create(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        values, error = parse_form(MenuBoardForm, form)
        if values is None:
            return redirect_with_error(MENUBOARDS_PATH, error or "Invalid form")
        return await _mutate_then_log(
            request,
            lambda client: client.post("menuboard", _board_body(values)),
            MENUBOARDS_PATH,
            f'Created menu board "{values.name}"',
            "Menu board created",
        )

    return await with_auth_form(request, _handler)


async def handle_menuboard_detail(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        board_id = int(params["id"])

        async def _with_client(client: CmsClient) -> Response:
            async def _render(board: Board) -> Response:
                # Category and product lists fail inline; the board itself must exist.
                messages = get_query_messages(request)
                categories: list[Category] = []
                products: dict[int, list[dict[str, Any]]] = {}
                fetch_error: str | None = None
                try:
                    categories = await _fetch_categories(client, board_id)
                    ids = [int(c["menuCategoryId"]) for c in categories if c.get("menuCategoryId") is not None]
                    listed = await asyncio.gather(*(_fetch_products(client, category_id) for category_id in ids))
                    products = dict(zip(ids, listed))
                except CmsClientError as exc:
                    fetch_error = exc.message
                return render(
                    request,
                    "admin/menuboard_detail.html",
                    {
                        "session": session,
                        "board": board,
                        "categories": categories,
                        "products": products,
                        "error": messages["error"] or fetch_error,
                        "success": messages["success"],
                    },
                )

            return await _with_board(request, client, board_id, _render)

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_menuboard_edit(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _render(board: Board) -> Response:
            return render(request, "admin/menuboard_form.html", {"session": session, "board": board})

        return await with_cms_client(
            request,
            lambda client: _with_board(request, client, int(params["id"]), _render),
        )

    return await require_session_or(request, _handler)


async def handle_menuboard_update(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id = params["id"]
        values, error = parse_form(MenuBoardForm, form)
        if values is None:
            return redirect_with_error(_board_path(board_id), error or "Invalid form")
        return await _mutate_then_log(
            request,
            lambda client: client.put(f"menuboard/{board_id}", _board_body(values)),
            _board_path(board_id),
            f'Updated menu board "{values.name}"',
            "Menu board updated",
        )

    return await with_auth_form(request, _handler)


async def handle_menuboard_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id = params["id"]
        return await _mutate_then_log(
            request,
            lambda client: client.delete(f"menuboard/{board_id}"),
            MENUBOARDS_PATH,
            f"Deleted menu board {board_id}",
            "Menu board deleted",
        )

    return await with_auth_form(request, _handler)


async def handle_category_new(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _render(board: Board) -> Response:
            return render(
                request,
                "admin/category_form.html",
                {"session": session, "board": board, "category": None},
            )

        return await with_cms_client(
            request,
            lambda client: _with_board(request, client, int(params["boardId"]), _render),
        )

    return await require_session_or(request, _handler)


async def handle_category_create(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id = params["boardId"]
        values, error = parse_form(CategoryForm, form)
        if values is None:
            return redirect_with_error(_board_path(board_id), error or "Invalid form")
        return await _mutate_then_log(
            request,
            lambda client: client.post(f"menuboard/{board_id}/category", _category_body(values)),
            _board_path(board_id),
            f'Created category "{values.name}" in board {board_id}',
            "Category created",
        )

    return await with_auth_form(request, _handler)


async def handle_category_edit(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _render(board: Board, category: Category) -> Response:
            return render(
                request,
                "admin/category_form.html",
                {"session": session, "board": board, "category": category},
            )

        return await with_cms_client(
            request,
            lambda client: _with_board_category(
                request, client, int(params["boardId"]), int(params["id"]), _render
            ),
        )

    return await require_session_or(request, _handler)


async def handle_category_update(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id, category_id = params["boardId"], params["id"]
        values, error = parse_form(CategoryForm, form)
        if values is None:
            return redirect_with_error(_board_path(board_id), error or "Invalid form")
        return await _mutate_then_log(
            request,
            lambda client: client.put(f"menuboard/{category_id}/category", _category_body(values)),
            _board_path(board_id),
            f'Updated category "{values.name}" in board {board_id}',
            "Category updated",
        )

    return await with_auth_form(request, _handler)


async def handle_category_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id, category_id = params["boardId"], params["id"]
        return await _mutate_then_log(
            request,
            lambda client: client.delete(f"menuboard/{category_id}/category"),
            _board_path(board_id),
            f"Deleted category {category_id} from board {board_id}",
            "Category deleted",
        )

    return await with_auth_form(request, _handler)


async def handle_product_new(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _render(board: Board, category: Category) -> Response:
            return render(
                request,
                "admin/product_form.html",
                {"session": session, "board": board, "category": category, "product": None},
            )

        return await with_cms_client(
            request,
            lambda client: _with_board_category(
                request, client, int(params["boardId"]), int(params["catId"]), _render
            ),
        )

    return await require_session_or(request, _handler)


async def handle_product_create(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id, category_id = params["boardId"], int(params["catId"])
        values, error = parse_form(ProductForm, form)
        if values is None:
            return redirect_with_error(_board_path(board_id), error or "Invalid form")
        return await _mutate_then_log(
            request,
            lambda client: client.post(f"menuboard/{category_id}/product", _product_body(category_id, values)),
            _board_path(board_id),
            f'Created product "{values.name}" in category {category_id}',
            "Product created",
        )

    return await with_auth_form(request, _handler)


async def handle_product_edit(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            async def _render(board: Board, category: Category) -> Response:
                products = await _fetch_products(client, int(params["catId"]))
                product = _find_by_id(products, "menuProductId", int(params["id"]))
                if product is None:
                    return not_found(request, "Product")
                return render(
                    request,
                    "admin/product_form.html",
                    {"session": session, "board": board, "category": category, "product": product},
                )

            return await _with_board_category(
                request, client, int(params["boardId"]), int(params["catId"]), _render
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_product_update(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id, category_id, product_id = params["boardId"], int(params["catId"]), params["id"]
        values, error = parse_form(ProductForm, form)
        if values is None:
            return redirect_with_error(_board_path(board_id), error or "Invalid form")
        return await _mutate_then_log(
            request,
            lambda client: client.put(f"menuboard/{product_id}/product", _product_body(category_id, values)),
            _board_path(board_id),
            f'Updated product "{values.name}" in category {category_id}',
            "Product updated",
        )

    return await with_auth_form(request, _handler)


async def handle_product_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        board_id, product_id = params["boardId"], params["id"]
        return await _mutate_then_log(
            request,
            lambda client: client.delete(f"menuboard/{product_id}/product"),
            _board_path(board_id),
            f"Deleted product {product_id} from board {board_id}",
            "Product deleted",
        )

    return await with_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/menuboards": handle_menuboards_get,
        "GET /admin/menuboard/new": handle_menuboard_new,
        "POST /admin/menuboard": handle_menuboard_create,
        "GET /admin/menuboard/:id": handle_menuboard_detail,
        "GET /admin/menuboard/:id/edit": handle_menuboard_edit,
        "POST /admin/menuboard/:id": handle_menuboard_update,
        "POST /admin/menuboard/:id/delete": handle_menuboard_delete,
        "GET /admin/menuboard/:boardId/category/new": handle_category_new,
        "POST /admin/menuboard/:boardId/category": handle_category_create,
        "GET /admin/menuboard/:boardId/category/:id/edit": handle_category_edit,
        "POST /admin/menuboard/:boardId/category/:id": handle_category_update,
        "POST /admin/menuboard/:boardId/category/:id/delete": handle_category_delete,
        "GET /admin/menuboard/:boardId/category/:catId/product/new": handle_product_new,
        "POST /admin/menuboard/:boardId/category/:catId/product": handle_product_create,
        "GET /admin/menuboard/:boardId/category/:catId/product/:id/edit": handle_product_edit,
        "POST /admin/menuboard/:boardId/category/:catId/product/:id": handle_product_update,
        "POST /admin/menuboard/:boardId/category/:catId/product/:id/delete": handle_product_delete,
    }
)
