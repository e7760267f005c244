from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from signboard.apps.web.context import AppContext
from signboard.apps.web.deps import get_db
from signboard.apps.web.dispatch import dispatch
from signboard.apps.web.middleware import apply_security_headers, request_pipeline_middleware, server_error_response
from signboard.apps.web.responses import html_error
from signboard.apps.web.routes.health import router as health_router
from signboard.core.errors import CmsClientError
from signboard.core.logging import configure_logging, redact_path
from signboard.persistence.db import init_db
from signboard.services.crypto.fields import validate_encryption_key


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Fail fast on a bad key before any encrypted row is touched.
    validate_encryption_key()
    await init_db()
    yield


def create_app(context: AppContext | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Signboard", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.context = context or AppContext()

    app.middleware("http")(request_pipeline_middleware)

    @app.exception_handler(CmsClientError)
    async def _cms_client_error_handler(request: Request, exc: CmsClientError) -> Response:
        logger.warning("cms_error_unhandled path=%s status=%s", redact_path(request.url.path), exc.http_status)
        return html_error(request, exc.message, 502, title="CMS request failed")

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        # Only reached when the pipeline middleware itself fails.
        return apply_security_headers(server_error_response(request, exc))

    app.include_router(health_router)

    @app.api_route("/{path:path}", methods=["GET", "POST"], include_in_schema=False)
    async def html_routes(request: Request, path: str, db: AsyncSession = Depends(get_db)) -> Response:
        # The declarative route tables read the request-scoped session from request.state.
        request.state.db = db
        return await dispatch(request)

    return app


app = create_app()
