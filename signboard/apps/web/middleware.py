from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from signboard.apps.web.responses import html_error
from signboard.core.config import get_settings
from signboard.core.logging import redact_path
from signboard.services.telemetry import record_request


logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_CSP_DIRECTIVES = (
    "frame-ancestors 'none'",
    "default-src 'self'",
    "style-src 'self'",
    "script-src 'self'",
    "form-action 'self'",
)


def security_headers() -> dict[str, str]:
    return {
        "x-content-type-options": "nosniff",
        "referrer-policy": "strict-origin-when-cross-origin",
        "x-robots-tag": "noindex, nofollow",
        "x-frame-options": "DENY",
        "content-security-policy": "; ".join(_CSP_DIRECTIVES),
    }


def _hostname(host: str) -> str:
    # Host header may carry a port; the allowed domain never does.
    return host.split(":", 1)[0]


def is_valid_domain(request: Request) -> bool:
    host = request.headers.get("host")
    if not host:
        return False
    return _hostname(host) == get_settings().allowed_domain


def is_valid_content_type(request: Request) -> bool:
    if request.method != "POST":
        return True
    content_type = request.headers.get("content-type", "")
    return content_type.startswith(_FORM_CONTENT_TYPES)


def apply_security_headers(response: Response) -> Response:
    for key, value in security_headers().items():
        response.headers[key] = value
    return response


def server_error_response(request: Request, exc: Exception) -> Response:
    # Built inside the pipeline so 500s still get security headers and a log line.
    logger.exception("unhandled_exception path=%s", redact_path(request.url.path), exc_info=exc)
    if request.url.path == "/health":
        return JSONResponse({"status": "error", "db": "error"}, status_code=500)
    return html_error(request, "Something went wrong", 500, title="Server error")


async def request_pipeline_middleware(request: Request, call_next: CallNext) -> Response:
    """Reject foreign hosts and non-form POSTs, then stamp security headers.

    Every outcome is logged with a redacted path and recorded in telemetry.
    """
    start = time.monotonic()
    if not is_valid_domain(request):
        response: Response = PlainTextResponse("Forbidden: Invalid domain", status_code=403)
    elif not is_valid_content_type(request):
        response = PlainTextResponse("Bad Request: Invalid Content-Type", status_code=400)
    else:
        try:
            response = await call_next(request)
        except Exception as exc:
            response = server_error_response(request, exc)
    apply_security_headers(response)

    latency_ms = (time.monotonic() - start) * 1000.0
    path = redact_path(request.url.path)
    record_request(path=path, status_code=response.status_code, latency_ms=latency_ms)
    logger.info(
        "request method=%s path=%s status=%s ms=%.1f",
        request.method,
        path,
        response.status_code,
        latency_ms,
    )
    return response
