from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import require_csrf_form
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import SetupForm, parse_form
from signboard.apps.web.responses import redirect, render, set_csrf_cookie
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.logging import ErrorCode, log_error
from signboard.persistence.repos.settings import is_setup_complete
from signboard.services.crypto.fields import generate_secure_token
from signboard.services.setup import complete_setup


logger = logging.getLogger(__name__)

SETUP_CSRF_COOKIE = "setup_csrf"


def _setup_page(request: Request, token: str, error: str | None = None, status_code: int = 200) -> Response:
    response = render(
        request,
        "setup.html",
        {"csrf_token": token, "error": error},
        status_code=status_code,
    )
    set_csrf_cookie(response, SETUP_CSRF_COOKIE, token, "/setup")
    return response


async def handle_setup_get(request: Request, params: RouteParams) -> Response:
    if await is_setup_complete(request_db(request)):
        return redirect("/")
    return _setup_page(request, generate_secure_token())


async def handle_setup_post(request: Request, params: RouteParams) -> Response:
    db = request_db(request)
    if await is_setup_complete(db):
        return redirect("/")

    form = await require_csrf_form(
        request,
        SETUP_CSRF_COOKIE,
        lambda token: _setup_page(request, token, "Invalid or expired form. Please try again.", 403),
    )
    if isinstance(form, Response):
        return form

    values, error = parse_form(SetupForm, form)
    if values is None:
        log_error(logger, ErrorCode.VALIDATION_FORM, "setup")
        # The double-submit cookie is still valid; reuse its token.
        return _setup_page(request, request.cookies[SETUP_CSRF_COOKIE], error, 400)
    if values.admin_password != values.admin_password_confirm:
        return _setup_page(request, request.cookies[SETUP_CSRF_COOKIE], "Passwords do not match", 400)

    await complete_setup(
        db,
        username=values.admin_username,
        password=values.admin_password,
        api_url=values.xibo_api_url,
        client_id=values.xibo_client_id,
        client_secret=values.xibo_client_secret,
    )
    return redirect("/setup/complete")


async def handle_setup_complete(request: Request, params: RouteParams) -> Response:
    if not await is_setup_complete(request_db(request)):
        return redirect("/setup")
    return render(request, "setup_complete.html")


routes = define_routes(
    {
        "GET /setup/complete": handle_setup_complete,
        "GET /setup": handle_setup_get,
        "POST /setup": handle_setup_post,
    }
)
