from __future__ import annotations

import logging
import re
import sys

from signboard.core.config import get_settings


class ErrorCode:
    # Stable codes so log searches survive message rewording.
    CMS_API_CONNECTION = "E_CMS_API_CONNECTION"
    CMS_API_AUTH = "E_CMS_API_AUTH"
    CMS_API_REQUEST = "E_CMS_API_REQUEST"
    AUTH_CSRF_MISMATCH = "E_AUTH_CSRF_MISMATCH"
    AUTH_INVALID_SESSION = "E_AUTH_INVALID_SESSION"
    VALIDATION_FORM = "E_VALIDATION_FORM"
    DB_QUERY = "E_DB_QUERY"
    CRYPTO_DECRYPT = "E_CRYPTO_DECRYPT"


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_NUMERIC_SEGMENT = re.compile(r"^\d+$")
# Invite codes and other opaque tokens are long url-safe strings.
_TOKEN_SEGMENT = re.compile(r"^[A-Za-z0-9_-]{20,}$")


def configure_logging() -> None:
    # Single stream handler on the root logger; safe to call more than once.
    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    if not any(getattr(handler, "_signboard", False) for handler in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._signboard = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    # httpx logs full URLs at INFO, which would leak query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def redact_path(path: str) -> str:
    """Replace ids and opaque tokens in a URL path with ``[id]``."""
    segments = path.split("/")
    redacted = [
        "[id]" if _NUMERIC_SEGMENT.match(segment) or _TOKEN_SEGMENT.match(segment) else segment
        for segment in segments
    ]
    return "/".join(redacted)


def log_error(logger: logging.Logger, code: str, detail: str | None = None) -> None:
    # Error lines carry a code and an optional non-sensitive detail.
    if detail:
        logger.error("error code=%s detail=%s", code, detail)
    else:
        logger.error("error code=%s", code)
