"""Media library pages: browse, upload, inspect, preview and delete.

Uploads arrive as ``multipart/form-data``; the CSRF check runs on the parsed
multipart body like any other session form.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from starlette.datastructures import FormData, UploadFile
from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_session_or, with_auth_form
from signboard.apps.web.deps import request_db
from signboard.apps.web.forms import MediaUploadForm, parse_form
from signboard.apps.web.helpers import cms_then_persist, fetch_list, get_query_messages, with_cms_client
from signboard.apps.web.responses import html_error, not_found, redirect_with_success, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.core.errors import CmsClientError
from signboard.persistence.repos.activity import log_activity
from signboard.services.cms.client import CmsClient


logger = logging.getLogger(__name__)

MEDIA_PATH = "/admin/media"
PREVIEW_CACHE_CONTROL = "public, max-age=300"
# Anything else is served as a download so CMS content never renders as a page.
_INLINE_PREVIEW_PREFIXES = ("image/png", "image/jpeg", "image/gif", "image/webp", "video/")


def _filter_media(items: list[Any], folder_id: str | None, media_type: str | None) -> list[dict[str, Any]]:
    media = [item for item in items if isinstance(item, dict)]
    if folder_id:
        media = [item for item in media if str(item.get("folderId")) == folder_id]
    if media_type:
        media = [item for item in media if item.get("mediaType") == media_type]
    return media


async def _fetch_folders(client: CmsClient) -> list[dict[str, Any]]:
    # Folder names only decorate the page; a failure leaves the picker empty.
    folders, _ = await fetch_list(client, "folders")
    return [folder for folder in folders if isinstance(folder, dict)]


async def _upload_page(
    request: Request,
    client: CmsClient,
    session: AuthSession,
    *,
    error: str | None = None,
    status_code: int = 200,
) -> Response:
    return render(
        request,
        "admin/media_upload.html",
        {"session": session, "folders": await _fetch_folders(client), "error": error},
        status_code=status_code,
    )


async def handle_media_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            (items, fetch_error), folders = await asyncio.gather(
                fetch_list(client, "library"),
                _fetch_folders(client),
            )
            folder_id = request.query_params.get("folderId") or None
            media_type = request.query_params.get("type") or None
            messages = get_query_messages(request)
            return render(
                request,
                "admin/media.html",
                {
                    "session": session,
                    "media": _filter_media(items, folder_id, media_type),
                    "folders": folders,
                    "folder_id": folder_id,
                    "media_type": media_type,
                    "error": messages["error"] or fetch_error,
                    "success": messages["success"],
                },
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_media_upload_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        return await with_cms_client(request, lambda client: _upload_page(request, client, session))

    return await require_session_or(request, _handler)


async def handle_media_upload_post(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            upload = form.get("file")
            if not isinstance(upload, UploadFile) or not upload.filename:
                return await _upload_page(
                    request, client, session, error="Please select a file to upload", status_code=400
                )
            content = await upload.read()
            if not content:
                return await _upload_page(
                    request, client, session, error="Please select a file to upload", status_code=400
                )
            values, error = parse_form(MediaUploadForm, form)
            if values is None:
                return await _upload_page(request, client, session, error=error, status_code=400)

            name = values.name or upload.filename
            data = {"name": name}
            if values.folder_id:
                data["folderId"] = str(values.folder_id)
            try:
                await client.post_multipart(
                    "library",
                    files={"files": (upload.filename, content, upload.content_type or "application/octet-stream")},
                    data=data,
                )
            except CmsClientError as exc:
                return await _upload_page(request, client, session, error=f"Upload failed: {exc.message}")
            await log_activity(request_db(request), f'Uploaded media "{name}"')
            return redirect_with_success(MEDIA_PATH, f'Uploaded "{name}"')

        return await with_cms_client(request, _with_client)

    return await with_auth_form(request, _handler)


async def handle_media_detail(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        media_id = params["id"]

        async def _with_client(client: CmsClient) -> Response:
            items = await client.get("library")
            media = next(
                (
                    item
                    for item in (items if isinstance(items, list) else [])
                    if isinstance(item, dict) and str(item.get("mediaId")) == media_id
                ),
                None,
            )
            if media is None:
                return not_found(request, "Media")
            return render(request, "admin/media_detail.html", {"session": session, "media": media})

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_media_preview(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            try:
                raw = await client.get_raw(f"library/download/{params['id']}")
            except CmsClientError as exc:
                logger.warning("media_preview_failed status=%s", exc.http_status)
                return html_error(request, "Failed to load preview", 502)
            content_type = raw.content_type
            if not content_type.startswith(_INLINE_PREVIEW_PREFIXES):
                content_type = "application/octet-stream"
            return Response(
                raw.content,
                media_type=content_type,
                headers={"cache-control": PREVIEW_CACHE_CONTROL},
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_media_delete(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession, form: FormData) -> Response:
        media_id = params["id"]

        async def _persist(_: Any) -> Response:
            await log_activity(request_db(request), f"Deleted media {media_id}")
            return redirect_with_success(MEDIA_PATH, "Media deleted")

        return await with_cms_client(
            request,
            lambda client: cms_then_persist(lambda: client.delete(f"library/{media_id}"), MEDIA_PATH, _persist),
        )

    return await with_auth_form(request, _handler)


routes = define_routes(
    {
        "GET /admin/media": handle_media_get,
        "GET /admin/media/upload": handle_media_upload_get,
        "POST /admin/media/upload": handle_media_upload_post,
        "GET /admin/media/:id": handle_media_detail,
        "GET /admin/media/:id/preview": handle_media_preview,
        "POST /admin/media/:id/delete": handle_media_delete,
    }
)
