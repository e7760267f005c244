from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.context import get_context
from signboard.apps.web.deps import request_db
from signboard.apps.web.responses import redirect_with_error, redirect_with_success
from signboard.core.errors import CmsClientError
from signboard.services.cms.client import CmsClient, load_cms_config


logger = logging.getLogger(__name__)

T = TypeVar("T")

SETTINGS_PATH = "/admin/settings"


def error_message(exc: Exception) -> str:
    if isinstance(exc, CmsClientError):
        return exc.message
    return str(exc) or type(exc).__name__


def get_query_messages(request: Request) -> dict[str, str | None]:
    # Flash messages travel as ?error= / ?success= after a redirect.
    return {
        "error": request.query_params.get("error") or None,
        "success": request.query_params.get("success") or None,
    }


async def load_cms_client(request: Request) -> CmsClient | None:
    config = await load_cms_config(request_db(request))
    if config is None:
        return None
    return get_context(request).client_for(config)


async def with_cms_client(
    request: Request,
    handler: Callable[[CmsClient], Awaitable[Response]],
) -> Response:
    """Run ``handler`` with a CMS client, or send the user to settings."""
    client = await load_cms_client(request)
    if client is None:
        return redirect_with_success(SETTINGS_PATH, "Configure CMS API credentials first")
    return await handler(client)


async def fetch_list(client: CmsClient, endpoint: str, params: dict[str, str] | None = None) -> tuple[list[Any], str | None]:
    # List pages render an inline error instead of failing the whole page.
    try:
        items = await client.get(endpoint, params)
    except CmsClientError as exc:
        return [], exc.message
    return (items if isinstance(items, list) else []), None


async def cms_then_persist(
    api_call: Callable[[], Awaitable[T]],
    error_path: str,
    persist: Callable[[T], Awaitable[Response]],
) -> Response:
    """Run the remote call first; only on success run the local write.

    A failed remote call redirects to ``error_path`` with the error message
    and leaves local storage untouched.
    """
    try:
        result = await api_call()
    except CmsClientError as exc:
        logger.warning("cms_then_persist_aborted status=%s", exc.http_status)
        return redirect_with_error(error_path, error_message(exc))
    return await persist(result)
