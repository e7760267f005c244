"""Session resolution, role gates and CSRF checks for HTML routes.

Handlers wrap their bodies in one of the ``require_*`` / ``with_*`` helpers:

* ``require_session_or``: any signed-in user, otherwise 302 to ``/admin``.
* ``require_owner_or`` / ``require_manager_or_above``: role gate, 403 on failure.
* ``with_auth_form`` and its role-scoped variants: additionally parse the
  form body and compare its ``csrf_token`` with the session's token.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.context import AppContext, get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.responses import (
    ADMIN_SESSION_COOKIE,
    SESSION_COOKIE,
    forbidden,
    redirect,
)
from signboard.core.errors import DecryptionError
from signboard.core.logging import ErrorCode, log_error
from signboard.persistence.repos.users import decrypt_admin_level, get_user_by_id
from signboard.services.auth.roles import AdminLevel, at_least
from signboard.services.auth.sessions import hash_session_token, now_ms
from signboard.services.crypto.fields import constant_time_equal, generate_secure_token, unwrap_key_with_token


logger = logging.getLogger(__name__)

LOGIN_PATH = "/admin"


@dataclass(frozen=True)
class AuthSession:
    token: str
    csrf_token: str
    wrapped_data_key: str | None
    user_id: int
    admin_level: AdminLevel
    expires: int
    impersonating: bool = False


SessionHandler = Callable[[AuthSession], Awaitable[Response]]
FormHandler = Callable[[AuthSession, FormData], Awaitable[Response]]


def form_value(form: FormData, key: str) -> str:
    # Multipart bodies may carry UploadFile values; only text fields count here.
    value = form.get(key)
    return value.strip() if isinstance(value, str) else ""


async def load_auth_session(context: AppContext, db: AsyncSession, token: str) -> AuthSession | None:
    """Resolve a raw session token into an ``AuthSession`` or ``None``.

    Expired sessions and sessions whose user no longer exists are deleted.
    """
    cache_key = hash_session_token(token)
    cached = await context.auth_sessions.get(cache_key)
    if cached is not None:
        if cached.expires >= now_ms():
            return cached
        await context.auth_sessions.pop(cache_key)

    record = await context.sessions.get(db, token)
    if record is None:
        return None
    if record.expires < now_ms():
        await context.sessions.delete(db, token)
        return None
    user = await get_user_by_id(db, record.user_id)
    if user is None:
        log_error(logger, ErrorCode.AUTH_INVALID_SESSION, "session references missing user")
        await context.sessions.delete(db, token)
        return None

    auth = AuthSession(
        token=token,
        csrf_token=record.csrf_token,
        wrapped_data_key=record.wrapped_data_key,
        user_id=record.user_id,
        admin_level=decrypt_admin_level(user),
        expires=record.expires,
    )
    await context.auth_sessions.put(cache_key, auth)
    return auth


async def get_authenticated_session(request: Request) -> AuthSession | None:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    auth = await load_auth_session(get_context(request), request_db(request), token)
    if auth is None:
        return None
    # Impersonation is a property of the browser, not of the session row.
    return replace(auth, impersonating=bool(request.cookies.get(ADMIN_SESSION_COOKIE)))


def session_data_key(session: AuthSession) -> bytes | None:
    if not session.wrapped_data_key:
        return None
    try:
        return unwrap_key_with_token(session.wrapped_data_key, session.token)
    except DecryptionError:
        log_error(logger, ErrorCode.CRYPTO_DECRYPT, "session data key")
        return None


async def require_session_or(request: Request, handler: SessionHandler) -> Response:
    session = await get_authenticated_session(request)
    if session is None:
        return redirect(LOGIN_PATH)
    return await handler(session)


async def _require_role(request: Request, required: AdminLevel, handler: SessionHandler) -> Response:
    session = await get_authenticated_session(request)
    if session is None:
        return redirect(LOGIN_PATH)
    if not at_least(session.admin_level, required):
        return forbidden(request)
    return await handler(session)


async def require_owner_or(request: Request, handler: SessionHandler) -> Response:
    return await _require_role(request, AdminLevel.OWNER, handler)


async def require_manager_or_above(request: Request, handler: SessionHandler) -> Response:
    return await _require_role(request, AdminLevel.MANAGER, handler)


async def _handle_auth_form(request: Request, required: AdminLevel | None, handler: FormHandler) -> Response:
    session = await get_authenticated_session(request)
    if session is None:
        return redirect(LOGIN_PATH)
    form = await request.form()
    if not constant_time_equal(session.csrf_token, form_value(form, "csrf_token")):
        log_error(logger, ErrorCode.AUTH_CSRF_MISMATCH, "session form")
        return forbidden(request, "Invalid CSRF token")
    if required is not None and not at_least(session.admin_level, required):
        return forbidden(request)
    return await handler(session, form)


async def with_auth_form(request: Request, handler: FormHandler) -> Response:
    return await _handle_auth_form(request, None, handler)


async def with_owner_auth_form(request: Request, handler: FormHandler) -> Response:
    return await _handle_auth_form(request, AdminLevel.OWNER, handler)


async def with_manager_auth_form(request: Request, handler: FormHandler) -> Response:
    return await _handle_auth_form(request, AdminLevel.MANAGER, handler)


async def require_csrf_form(
    request: Request,
    cookie_name: str,
    on_invalid: Callable[[str], Response],
) -> FormData | Response:
    """Validate a double-submit CSRF cookie against the form's ``csrf_token``.

    Returns the parsed form, or ``on_invalid(new_token)`` so the caller can
    re-render the page with a fresh token and cookie.
    """
    cookie_token = request.cookies.get(cookie_name, "")
    form = await request.form()
    form_token = form_value(form, "csrf_token")
    if not cookie_token or not form_token or not constant_time_equal(cookie_token, form_token):
        log_error(logger, ErrorCode.AUTH_CSRF_MISMATCH, cookie_name)
        return on_invalid(generate_secure_token())
    return form
