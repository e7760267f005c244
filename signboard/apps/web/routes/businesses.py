from __future__ import annotations

from dataclasses import dataclass
import logging
import secrets
import string

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import (
    AuthSession,
    form_value,
    require_manager_or_above,
    with_manager_auth_form,
)
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import BusinessForm, parse_form
from signboard.apps.web.helpers import cms_then_persist, get_query_messages, with_cms_client
from signboard.apps.web.responses import not_found, redirect_with_error, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.domain.models import Business
from signboard.persistence.repos.businesses import (
    assign_user_to_business,
    create_business,
    delete_business,
    get_all_businesses,
    get_business_by_id,
    get_business_user_ids,
    get_screens_for_business,
    remove_user_from_business,
    to_display_business,
    to_display_screen,
    update_business,
)
from signboard.persistence.repos.users import decrypt_admin_level, decrypt_username, get_all_users, get_user_by_id
from signboard.services.audit import record_event
from signboard.services.auth.roles import AdminLevel
from signboard.services.cms.client import CmsClient, response_id


logger = logging.getLogger(__name__)

BUSINESSES_PATH = "/admin/businesses"

# CMS dataset column data types.
STRING_COLUMN = 1
NUMBER_COLUMN = 2
VALUE_COLUMN_TYPE = 1
DATASET_COLUMNS = (
    ("name", STRING_COLUMN),
    ("price", STRING_COLUMN),
    ("image_id", NUMBER_COLUMN),
    ("available", NUMBER_COLUMN),
    ("sort_order", NUMBER_COLUMN),
)
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ProvisionedResources:
    folder_id: int
    folder_name: str
    dataset_id: int


@dataclass(frozen=True)
class MemberUser:
    id: int
    username: str


def _random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


async def provision_cms_resources(client: CmsClient, business_name: str) -> ProvisionedResources:
    """Create the business's folder, product dataset and its columns in the CMS.

    Raises ``CmsClientError`` on the first failing call; nothing is written
    locally here.
    """
    folder_name = f"{business_name}-{_random_suffix()}"
    folder = await client.post("folders", {"text": folder_name})
    folder_id = response_id(folder, "folderId")
    dataset = await client.post(
        "dataset",
        {"dataSet": folder_name, "description": f"Product data for {business_name}"},
    )
    dataset_id = response_id(dataset, "dataSetId")
    for order, (heading, data_type) in enumerate(DATASET_COLUMNS, start=1):
        await client.post(
            f"dataset/{dataset_id}/column",
            {
                "heading": heading,
                "dataTypeId": data_type,
                "dataSetColumnTypeId": VALUE_COLUMN_TYPE,
                "columnOrder": order,
            },
        )
    return ProvisionedResources(
        folder_id=folder_id,
        folder_name=folder_name,
        dataset_id=dataset_id,
    )


async def _members(db: AsyncSession, business_id: int) -> tuple[list[MemberUser], list[MemberUser]]:
    # Only user-role accounts are business members; returns (assigned, available).
    assigned_ids = set(await get_business_user_ids(db, business_id))
    assigned: list[MemberUser] = []
    available: list[MemberUser] = []
    for user in await get_all_users(db):
        if decrypt_admin_level(user) != AdminLevel.USER:
            continue
        member = MemberUser(id=user.id, username=decrypt_username(user))
        (assigned if user.id in assigned_ids else available).append(member)
    return assigned, available


async def _detail_page(
    request: Request,
    db: AsyncSession,
    session: AuthSession,
    business: Business,
    *,
    error: str | None = None,
    success: str | None = None,
    status_code: int = 200,
) -> Response:
    screens = [to_display_screen(screen) for screen in await get_screens_for_business(db, business.id)]
    assigned, available = await _members(db, business.id)
    return render(
        request,
        "admin/business_detail.html",
        {
            "session": session,
            "business": to_display_business(business),
            "screens": screens,
            "assigned": assigned,
            "available": available,
            "error": error,
            "success": success,
        },
        status_code=status_code,
    )


def _create_page(request: Request, session: AuthSession, error: str | None = None, status_code: int = 200) -> Response:
    return render(
        request,
        "admin/business_create.html",
        {"session": session, "error": error},
        status_code=status_code,
    )


async def handle_businesses_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        businesses = [to_display_business(b) for b in await get_all_businesses(request_db(request))]
        return render(
            request,
            "admin/businesses.html",
            {"session": session, "businesses": businesses, **get_query_messages(request)},
        )

    return await require_manager_or_above(request, _handler)


async def handle_business_create_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        return _create_page(request, session)

    return await require_manager_or_above(request, _handler)


async def handle_business_create_post(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        values, error = parse_form(BusinessForm, form)
        if values is None:
            return _create_page(request, session, error, 400)
        db = request_db(request)

        async def _persist(provisioned: ProvisionedResources) -> Response:
            business = await create_business(
                db,
                name=values.name,
                xibo_folder_id=provisioned.folder_id,
                folder_name=provisioned.folder_name,
                xibo_dataset_id=provisioned.dataset_id,
            )
            await record_event(
                session=db,
                actor_user_id=session.user_id,
                action="CREATE",
                resource_type="business",
                resource_id=business.id,
                detail=f'Created business "{values.name}"',
            )
            return redirect_with_success(BUSINESSES_PATH, "Business created successfully")

        return await with_cms_client(
            request,
            lambda client: cms_then_persist(
                lambda: provision_cms_resources(client, values.name),
                BUSINESSES_PATH,
                _persist,
            ),
        )

    return await with_manager_auth_form(request, _handler)


async def handle_business_detail_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        messages = get_query_messages(request)
        return await _detail_page(
            request, db, session, business, error=messages["error"], success=messages["success"]
        )

    return await require_manager_or_above(request, _handler)


async def handle_business_update(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        values, error = parse_form(BusinessForm, form)
        if values is None:
            return await _detail_page(request, db, session, business, error=error, status_code=400)
        await update_business(db, business, name=values.name)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="UPDATE",
            resource_type="business",
            resource_id=business.id,
            detail=f"Updated business {business.id}",
        )
        return redirect_with_success(f"/admin/business/{business.id}", "Business updated")

    return await with_manager_auth_form(request, _handler)


async def handle_business_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        business_id = business.id
        await delete_business(db, business_id)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="DELETE",
            resource_type="business",
            resource_id=business_id,
            detail=f"Deleted business {business_id}",
        )
        return redirect_with_success(BUSINESSES_PATH, "Business deleted")

    return await with_manager_auth_form(request, _handler)


def _form_user_id(form: FormData) -> int | None:
    raw = form_value(form, "user_id")
    return int(raw) if raw.isdigit() and int(raw) > 0 else None


async def handle_assign_user(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        detail_path = f"/admin/business/{business.id}"
        user_id = _form_user_id(form)
        if user_id is None:
            return redirect_with_error(detail_path, "Please select a user")
        user = await get_user_by_id(db, user_id)
        if user is None:
            return redirect_with_error(detail_path, "User not found")
        if decrypt_admin_level(user) != AdminLevel.USER:
            return redirect_with_error(detail_path, "Only user-role users can be assigned")

        await assign_user_to_business(db, business.id, user_id)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="UPDATE",
            resource_type="business",
            resource_id=business.id,
            detail=f"Assigned user {user_id} to business {business.id}",
        )
        return redirect_with_success(detail_path, "User assigned")

    return await with_manager_auth_form(request, _handler)


async def handle_remove_user(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        db = request_db(request)
        business = await get_business_by_id(db, int(params["id"]))
        if business is None:
            return not_found(request, "Business")
        detail_path = f"/admin/business/{business.id}"
        user_id = _form_user_id(form)
        if user_id is None:
            return redirect_with_error(detail_path, "Invalid user")

        await remove_user_from_business(db, business.id, user_id)
        await record_event(
            session=db,
            actor_user_id=session.user_id,
            action="UPDATE",
            resource_type="business",
            resource_id=business.id,
            detail=f"Removed user {user_id} from business {business.id}",
        )
        return redirect_with_success(detail_path, "User removed")

    return await with_manager_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/businesses": handle_businesses_get,
        "GET /admin/business/create": handle_business_create_get,
        "POST /admin/business/create": handle_business_create_post,
        "GET /admin/business/:id": handle_business_detail_get,
        "POST /admin/business/:id": handle_business_update,
        "POST /admin/business/:id/delete": handle_business_delete,
        "POST /admin/business/:id/assign-user": handle_assign_user,
        "POST /admin/business/:id/remove-user": handle_remove_user,
    }
)
