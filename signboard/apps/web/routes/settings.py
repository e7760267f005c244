from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_owner_or, with_owner_auth_form
from signboard.apps.web.context import get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import ChangePasswordForm, CmsCredentialsForm, parse_form
from signboard.apps.web.helpers import get_query_messages, load_cms_client
from signboard.apps.web.responses import clear_session_cookie, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.errors import DecryptionError
from signboard.core.logging import ErrorCode, log_error
from signboard.persistence.repos.settings import get_cms_credentials, update_cms_credentials
from signboard.persistence.repos.users import activate_user, get_user_by_id, set_user_password, verify_user_password
from signboard.services.audit import record_event
from signboard.services.cms.types import ConnectionTestResult
from signboard.services.crypto.fields import derive_kek, unwrap_key


logger = logging.getLogger(__name__)

SETTINGS_PATH = "/admin/settings"


async def _settings_page(
    request: Request,
    db: AsyncSession,
    session: AuthSession,
    *,
    connection: ConnectionTestResult | None = None,
    error: str | None = None,
    success: str | None = None,
    status_code: int = 200,
) -> Response:
    # The client secret is never echoed back.
    api_url, client_id, _secret = await get_cms_credentials(db)
    return render(
        request,
        "admin/settings.html",
        {
            "session": session,
            "api_url": api_url,
            "client_id": client_id,
            "connection": connection,
            "error": error,
            "success": success,
        },
        status_code=status_code,
    )


async def handle_settings_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        messages = get_query_messages(request)
        return await _settings_page(
            request,
            request_db(request),
            session,
            error=messages["error"],
            success=messages["success"],
        )

    return await require_owner_or(request, _handler)


async def handle_cms_update(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        values, error = parse_form(CmsCredentialsForm, form)
        if values is None:
            return await _settings_page(request, db, session, error=error, status_code=400)
        await update_cms_credentials(
            db,
            api_url=values.xibo_api_url,
            client_id=values.xibo_client_id,
            client_secret=values.xibo_client_secret,
        )
        # Tokens and cached responses belong to the previous CMS account.
        await get_context(request).forget_cms_state()
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="UPDATE",
            resource_type="settings",
            detail="Updated CMS credentials",
        )
        return redirect_with_success(SETTINGS_PATH, "CMS credentials updated")

    return await with_owner_auth_form(request, _handler)


async def handle_connection_test(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        client = await load_cms_client(request)
        if client is None:
            result = ConnectionTestResult(success=False, message="CMS API credentials are not configured")
        else:
            result = await client.test_connection()
        logger.info("cms_connection_test success=%s", result.success)
        return await _settings_page(request, db, session, connection=result)

    return await with_owner_auth_form(request, _handler)


async def handle_password_change(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        values, error = parse_form(ChangePasswordForm, form)
        if values is None:
            return await _settings_page(request, db, session, error=error, status_code=400)
        if values.new_password != values.new_password_confirm:
            return await _settings_page(request, db, session, error="Passwords do not match", status_code=400)

        user = await get_user_by_id(db, session.user_id)
        old_hash = verify_user_password(user, values.current_password) if user is not None else None
        if user is None or old_hash is None or not user.wrapped_data_key:
            return await _settings_page(request, db, session, error="Invalid current password", status_code=400)

        try:
            data_key = unwrap_key(user.wrapped_data_key, derive_kek(old_hash))
        except DecryptionError:
            log_error(logger, ErrorCode.CRYPTO_DECRYPT, "password change")
            return await _settings_page(
                request, db, session, error="Failed to change password", status_code=500
            )

        new_hash = await set_user_password(db, user, values.new_password)
        await activate_user(db, user, data_key=data_key, password_hash=new_hash)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="UPDATE",
            resource_type="user",
            resource_id=session.user_id,
            detail="Changed password",
        )
        # Every device signs in again with the new password.
        await get_context(request).sessions.delete_all(db)
        response = redirect_with_success("/admin", "Password changed. Please log in again.")
        clear_session_cookie(response)
        return response

    return await with_owner_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/settings": handle_settings_get,
        "POST /admin/settings/xibo": handle_cms_update,
        "POST /admin/settings/test": handle_connection_test,
        "POST /admin/settings/password": handle_password_change,
    }
)
