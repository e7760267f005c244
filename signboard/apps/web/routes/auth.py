from __future__ import annotations

import asyncio
import logging
import secrets

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, get_authenticated_session
from signboard.apps.web.context import get_context
from signboard.apps.web.deps import get_client_ip, request_db
from signboard.apps.web.forms import LoginForm, parse_form
from signboard.apps.web.responses import clear_session_cookie, redirect, set_session_cookie
from signboard.apps.web.router import RouteParams, define_routes
from signboard.apps.web.routes.dashboard import login_response
from signboard.core.config import get_settings
from signboard.core.errors import DecryptionError
from signboard.core.logging import ErrorCode, log_error
from signboard.persistence.repos.users import get_user_by_username, verify_user_password
from signboard.services.audit import record_event
from signboard.services.auth.login_attempts import (
    clear_login_attempts,
    is_login_rate_limited,
    record_failed_login,
)
from signboard.services.crypto.fields import derive_kek, unwrap_key


logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


async def _login_delay() -> None:
    # 100-200ms jitter so response timing does not reveal which check failed.
    if get_settings().login_delay_enabled:
        await asyncio.sleep(0.1 + secrets.randbelow(100) / 1000.0)


async def handle_login_get(request: Request, params: RouteParams) -> Response:
    return redirect("/admin")


async def handle_login_post(request: Request, params: RouteParams) -> Response:
    await _login_delay()
    db = request_db(request)
    client_ip = get_client_ip(request)

    if await is_login_rate_limited(db, client_ip):
        return login_response(request, "Too many login attempts. Please try again later.", 429)

    values, error = parse_form(LoginForm, await request.form())
    if values is None:
        return login_response(request, error, 400)

    user = await get_user_by_username(db, values.username)
    password_hash = verify_user_password(user, values.password) if user is not None else None
    if user is None or password_hash is None:
        locked = await record_failed_login(db, client_ip)
        if locked:
            logger.warning("login_lockout_triggered")
        if user is not None:
            await record_event(
                session=db,
                actor_user_id=user.id,
                action="LOGIN_FAILED",
                resource_type="session",
                detail="Failed login",
            )
        return login_response(request, INVALID_CREDENTIALS, 401)

    await clear_login_attempts(db, client_ip)

    data_key: bytes | None = None
    if user.wrapped_data_key:
        try:
            data_key = unwrap_key(user.wrapped_data_key, derive_kek(password_hash))
        except DecryptionError:
            # Session still works; pages needing the data key report it missing.
            log_error(logger, ErrorCode.CRYPTO_DECRYPT, "user data key")

    await record_event(
        session=db,
        actor_user_id=user.id,
        action="LOGIN",
        resource_type="session",
        detail="Successful login",
    )
    token = await get_context(request).sessions.create_new(db, user.id, data_key=data_key)
    response = redirect("/admin")
    set_session_cookie(response, token)
    return response


async def handle_logout(request: Request, params: RouteParams) -> Response:
    session: AuthSession | None = await get_authenticated_session(request)
    if session is not None:
        db = request_db(request)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="LOGOUT",
            resource_type="session",
            detail="User logged out",
        )
        await get_context(request).sessions.delete(db, session.token)
    response = redirect("/admin")
    clear_session_cookie(response)
    return response


routes = define_routes(
    {
        "GET /admin/login": handle_login_get,
        "POST /admin/login": handle_login_post,
        "GET /admin/logout": handle_logout,
    }
)
