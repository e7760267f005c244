"""Reversible role downgrade for support work.

Starting impersonation parks the acting admin's session token in
``__Host-admin-session`` and swaps ``__Host-session`` for a fresh session of
the target user carrying the same data key. Stopping deletes that temporary
session and restores the parked token if it is still valid.
"""

from __future__ import annotations

import logging

from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, load_auth_session, session_data_key, with_manager_auth_form
from signboard.apps.web.context import get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.responses import (
    ADMIN_SESSION_COOKIE,
    SESSION_COOKIE,
    clear_admin_session_cookie,
    clear_session_cookie,
    forbidden,
    html_error,
    redirect,
    set_admin_session_cookie,
    set_session_cookie,
)
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.config import get_settings
from signboard.persistence.repos.activity import log_activity
from signboard.persistence.repos.users import decrypt_admin_level, decrypt_username, get_user_by_id
from signboard.services.audit import record_event
from signboard.services.auth.roles import AdminLevel


logger = logging.getLogger(__name__)


async def handle_impersonate(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        target_id = int(params["id"])
        if target_id == session.user_id:
            return html_error(request, "Cannot impersonate yourself", 400)

        target = await get_user_by_id(db, target_id)
        if target is None:
            return html_error(request, "User not found", 404)
        target_level = decrypt_admin_level(target)
        if target_level == AdminLevel.OWNER:
            return forbidden(request, "Cannot impersonate an owner")
        if session.admin_level == AdminLevel.MANAGER and target_level != AdminLevel.USER:
            return forbidden(request)

        data_key = session_data_key(session)
        if data_key is None:
            return html_error(request, "Cannot impersonate: session lacks data key", 500)

        new_token = await get_context(request).sessions.create_new(db, target_id, data_key=data_key)
        await log_activity(db, f'Impersonated user "{decrypt_username(target)}" (id={target_id})')
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="IMPERSONATE",
            resource_type="user",
            resource_id=target_id,
            detail=f"Started impersonating user {target_id}",
        )
        logger.info("impersonation_started actor=%s target=%s", session.user_id, target_id)

        response = redirect("/admin")
        set_admin_session_cookie(response, session.token, get_settings().impersonation_cookie_max_age_s)
        set_session_cookie(response, new_token)
        return response

    return await with_manager_auth_form(request, _handler)


async def handle_stop_impersonating(request: Request, params: RouteParams) -> Response:
    admin_token = request.cookies.get(ADMIN_SESSION_COOKIE)
    if not admin_token:
        return redirect("/admin")

    db = request_db(request)
    current_token = request.cookies.get(SESSION_COOKIE)
    if current_token and current_token != admin_token:
        await get_context(request).sessions.delete(db, current_token)

    admin_session = await load_auth_session(get_context(request), db, admin_token)
    if admin_session is None:
        # The parked session expired meanwhile; both cookies are stale.
        response = redirect("/admin")
        clear_session_cookie(response)
        clear_admin_session_cookie(response)
        return response

    await log_activity(db, "Stopped impersonating")
    await record_event(
        session=db,
        actor_user_id=admin_session.user_id,
        action="STOP_IMPERSONATE",
        resource_type="user",
        detail="Stopped impersonating",
    )
    response = redirect("/admin/users")
    set_session_cookie(response, admin_token)
    clear_admin_session_cookie(response)
    return response


routes = define_routes(
    {
        "POST /admin/users/:id/impersonate": handle_impersonate,
        "GET /admin/stop-impersonating": handle_stop_impersonating,
    }
)
