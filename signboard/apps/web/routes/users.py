from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import (
    AuthSession,
    require_owner_or,
    session_data_key,
    with_owner_auth_form,
)
from signboard.apps.web.context import get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import InviteUserForm, parse_form
from signboard.apps.web.helpers import get_query_messages
from signboard.apps.web.responses import redirect, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.config import get_settings
from signboard.domain.models import User
from signboard.persistence.repos.activity import log_activity
from signboard.persistence.repos.users import (
    activate_user,
    create_invited_user,
    decrypt_admin_level,
    decrypt_username,
    delete_user,
    get_all_users,
    get_user_by_id,
    has_password,
    hash_invite_code,
    is_username_taken,
)
from signboard.services.audit import record_event
from signboard.services.auth.roles import AdminLevel
from signboard.services.crypto.fields import decrypt, generate_secure_token


@dataclass(frozen=True)
class DisplayUser:
    id: int
    username: str
    admin_level: str
    has_password: bool
    has_data_key: bool


def _to_display_user(user: User) -> DisplayUser:
    return DisplayUser(
        id=user.id,
        username=decrypt_username(user),
        admin_level=decrypt_admin_level(user).label,
        has_password=has_password(user),
        has_data_key=user.wrapped_data_key is not None,
    )


async def _users_page(
    request: Request,
    db: AsyncSession,
    session: AuthSession,
    *,
    invite_link: str | None = None,
    error: str | None = None,
    success: str | None = None,
    status_code: int = 200,
) -> Response:
    users = [_to_display_user(user) for user in await get_all_users(db)]
    return render(
        request,
        "admin/users.html",
        {
            "session": session,
            "users": users,
            "invite_link": invite_link,
            "error": error,
            "success": success,
        },
        status_code=status_code,
    )


async def handle_users_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        messages = get_query_messages(request)
        return await _users_page(
            request,
            request_db(request),
            session,
            invite_link=request.query_params.get("invite") or None,
            error=messages["error"],
            success=messages["success"],
        )

    return await require_owner_or(request, _handler)


async def handle_users_post(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        values, error = parse_form(InviteUserForm, form)
        if values is None:
            return await _users_page(request, db, session, error=error, status_code=400)
        if await is_username_taken(db, values.username):
            return await _users_page(request, db, session, error="Username is already taken", status_code=400)

        settings = get_settings()
        invite_code = generate_secure_token()
        await create_invited_user(
            db,
            username=values.username,
            admin_level=AdminLevel.from_label(values.admin_level),
            invite_code_hash=hash_invite_code(invite_code),
            invite_expiry=datetime.now(timezone.utc) + timedelta(days=settings.invite_ttl_days),
        )
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="CREATE",
            resource_type="user",
            detail=f"Invited {values.admin_level} user",
        )
        invite_link = f"https://{settings.allowed_domain}/join/{invite_code}"
        # The link is shown once; it rides the redirect in the query string.
        return redirect(f"/admin/users?{urlencode({'invite': invite_link})}")

    return await with_owner_auth_form(request, _handler)


async def handle_user_activate(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        user = await get_user_by_id(db, int(params["id"]))
        if user is None:
            return await _users_page(request, db, session, error="User not found", status_code=404)
        if not has_password(user):
            return await _users_page(
                request, db, session, error="User has not set their password yet", status_code=400
            )
        if user.wrapped_data_key:
            return await _users_page(request, db, session, error="User is already activated", status_code=400)
        data_key = session_data_key(session)
        if data_key is None:
            return await _users_page(
                request, db, session, error="Cannot activate: session lacks data key", status_code=500
            )

        await activate_user(db, user, data_key=data_key, password_hash=decrypt(user.password_hash))
        await log_activity(db, f'Activated user "{decrypt_username(user)}" (id={user.id})')
        return redirect_with_success("/admin/users", "User activated successfully")

    return await with_owner_auth_form(request, _handler)


async def handle_user_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        user = await get_user_by_id(db, int(params["id"]))
        if user is None:
            return await _users_page(request, db, session, error="User not found", status_code=404)
        if user.id == session.user_id:
            return await _users_page(
                request, db, session, error="Cannot delete your own account", status_code=400
            )
        user_id = user.id
        await get_context(request).sessions.delete_for_user(db, user_id)
        await delete_user(db, user_id)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="DELETE",
            resource_type="user",
            resource_id=user_id,
            detail=f"Deleted user {user_id}",
        )
        return redirect_with_success("/admin/users", "User deleted successfully")

    return await with_owner_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/users": handle_users_get,
        "POST /admin/users": handle_users_post,
        "POST /admin/users/:id/activate": handle_user_activate,
        "POST /admin/users/:id/delete": handle_user_delete,
    }
)
