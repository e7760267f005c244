from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import require_csrf_form
from signboard.apps.web.context import get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import JoinForm, parse_form
from signboard.apps.web.responses import html_error, redirect, render, set_csrf_cookie, set_session_cookie
from signboard.apps.web.router import RouteParams, define_routes
from signboard.persistence.repos.activity import log_activity
from signboard.persistence.repos.users import (
    decrypt_username,
    get_user_by_invite_code,
    is_invite_valid,
    set_user_password,
)
from signboard.services.crypto.fields import generate_secure_token


JOIN_CSRF_COOKIE = "join_csrf"
INVALID_INVITE = "This invite link is invalid or has expired"


def _join_page(
    request: Request,
    code: str,
    token: str,
    username: str,
    error: str | None = None,
    status_code: int = 200,
) -> Response:
    response = render(
        request,
        "join.html",
        {"code": code, "csrf_token": token, "username": username, "error": error},
        status_code=status_code,
    )
    set_csrf_cookie(response, JOIN_CSRF_COOKIE, token, "/join")
    return response


async def handle_join_get(request: Request, params: RouteParams) -> Response:
    code = params["code"]
    user = await get_user_by_invite_code(request_db(request), code)
    if user is None or not is_invite_valid(user):
        return html_error(request, INVALID_INVITE, 404, title="Invite not found")
    return _join_page(request, code, generate_secure_token(), decrypt_username(user))


async def handle_join_post(request: Request, params: RouteParams) -> Response:
    db = request_db(request)
    code = params["code"]
    user = await get_user_by_invite_code(db, code)
    if user is None or not is_invite_valid(user):
        return html_error(request, INVALID_INVITE, 404, title="Invite not found")
    username = decrypt_username(user)

    form = await require_csrf_form(
        request,
        JOIN_CSRF_COOKIE,
        lambda token: _join_page(request, code, token, username, "Invalid or expired form. Please try again.", 403),
    )
    if isinstance(form, Response):
        return form

    token = request.cookies[JOIN_CSRF_COOKIE]
    values, error = parse_form(JoinForm, form)
    if values is None:
        return _join_page(request, code, token, username, error, 400)
    if values.password != values.password_confirm:
        return _join_page(request, code, token, username, "Passwords do not match", 400)

    await set_user_password(db, user, values.password)
    await log_activity(db, f'User "{username}" accepted their invite')
    # No data key until an owner activates the account.
    session_token = await get_context(request).sessions.create_new(db, user.id)
    response = redirect("/admin")
    set_session_cookie(response, session_token)
    return response


routes = define_routes(
    {
        "GET /join/:code": handle_join_get,
        "POST /join/:code": handle_join_post,
    }
)
