from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping
from urllib.parse import quote

from fastapi.templating import Jinja2Templates
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response


TEMPLATES_DIR = Path(__file__).resolve().parents[2] / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

SESSION_COOKIE = "__Host-session"
ADMIN_SESSION_COOKIE = "__Host-admin-session"
SESSION_COOKIE_MAX_AGE_S = 86_400
CSRF_COOKIE_MAX_AGE_S = 3_600


def render(
    request: Request,
    name: str,
    context: Mapping[str, Any] | None = None,
    *,
    status_code: int = 200,
) -> HTMLResponse:
    return templates.TemplateResponse(request, name, dict(context or {}), status_code=status_code)


def html_error(request: Request, message: str, status_code: int, *, title: str | None = None) -> HTMLResponse:
    # Plain error page for 400/403/404/500 branches inside handlers.
    return render(
        request,
        "error.html",
        {"title": title or message, "message": message},
        status_code=status_code,
    )


def not_found(request: Request, label: str = "Page") -> HTMLResponse:
    return html_error(request, f"{label} not found", 404)


def forbidden(request: Request, message: str = "Forbidden") -> HTMLResponse:
    return html_error(request, message, 403)


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=302)


def _with_query(url: str, key: str, message: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{key}={quote(message, safe='')}"


def redirect_with_success(url: str, message: str) -> RedirectResponse:
    # Post/redirect/get: the target page reads ?success= and shows a flash.
    return redirect(_with_query(url, "success", message))


def redirect_with_error(url: str, message: str) -> RedirectResponse:
    return redirect(_with_query(url, "error", message))


def _set_host_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    # __Host- cookies must be Secure, Path=/ and carry no Domain attribute.
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        path="/",
        secure=True,
        httponly=True,
        samesite="strict",
    )


def _clear_cookie(response: Response, name: str, path: str = "/") -> None:
    response.delete_cookie(name, path=path, secure=True, httponly=True, samesite="strict")


def set_session_cookie(response: Response, token: str) -> None:
    _set_host_cookie(response, SESSION_COOKIE, token, SESSION_COOKIE_MAX_AGE_S)


def clear_session_cookie(response: Response) -> None:
    _clear_cookie(response, SESSION_COOKIE)


def set_admin_session_cookie(response: Response, token: str, max_age: int = SESSION_COOKIE_MAX_AGE_S) -> None:
    _set_host_cookie(response, ADMIN_SESSION_COOKIE, token, max_age)


def clear_admin_session_cookie(response: Response) -> None:
    _clear_cookie(response, ADMIN_SESSION_COOKIE)


def set_csrf_cookie(response: Response, name: str, token: str, path: str) -> None:
    # Double-submit cookie for flows without a session (setup, join).
    response.set_cookie(
        name,
        token,
        max_age=CSRF_COOKIE_MAX_AGE_S,
        path=path,
        secure=True,
        httponly=True,
        samesite="strict",
    )
