from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

from signboard.apps.web.access import AuthSession, require_session_or
from signboard.apps.web.helpers import fetch_list, with_cms_client
from signboard.apps.web.responses import not_found, render
from signboard.apps.web.router import RouteParams, define_routes
from signboard.services.cms.client import CmsClient


# Rows shown on the detail page.
SAMPLE_ROWS = 10


async def handle_datasets_get(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        async def _with_client(client: CmsClient) -> Response:
            datasets, fetch_error = await fetch_list(client, "dataset")
            return render(
                request,
                "admin/datasets.html",
                {"session": session, "datasets": datasets, "error": fetch_error},
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


async def handle_dataset_detail(request: Request, params: RouteParams) -> Response:
    async def _handler(session: AuthSession) -> Response:
        dataset_id = params["id"]

        async def _with_client(client: CmsClient) -> Response:
            datasets = await client.get("dataset", {"dataSetId": dataset_id})
            dataset = next(
                (
                    item
                    for item in (datasets if isinstance(datasets, list) else [])
                    if isinstance(item, dict) and str(item.get("dataSetId")) == dataset_id
                ),
                None,
            )
            if dataset is None:
                return not_found(request, "Dataset")
            # Columns and rows are optional extras; their errors render inline.
            columns, column_error = await fetch_list(client, f"dataset/{dataset_id}/column")
            rows, row_error = await fetch_list(
                client,
                f"dataset/data/{dataset_id}",
                {"start": "0", "length": str(SAMPLE_ROWS)},
            )
            headings = [str(column.get("heading")) for column in columns if isinstance(column, dict)]
            return render(
                request,
                "admin/dataset_detail.html",
                {
                    "session": session,
                    "dataset": dataset,
                    "columns": columns,
                    "headings": headings,
                    "rows": [row for row in rows if isinstance(row, dict)],
                    "error": column_error or row_error,
                },
            )

        return await with_cms_client(request, _with_client)

    return await require_session_or(request, _handler)


routes = define_routes(
    {
        "GET /admin/datasets": handle_datasets_get,
        "GET /admin/dataset/:id": handle_dataset_detail,
    }
)
