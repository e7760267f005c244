"""Declarative ``"METHOD /path"`` routing for the HTML surface.

Patterns use ``:name`` placeholders. A placeholder called ``id`` or ending
in ``Id`` (``:boardId``) only matches digits; any other placeholder matches
a run of non-slash characters. Rules are tried in registration order and
the first match wins.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Awaitable, Callable, Mapping

from starlette.requests import Request
from starlette.responses import Response


RouteParams = dict[str, str]
RouteHandler = Callable[[Request, RouteParams], Awaitable[Response]]

_PLACEHOLDER = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True)
class CompiledRoute:
    method: str
    pattern: re.Pattern[str]
    param_names: tuple[str, ...]
    handler: RouteHandler


def _segment_regex(name: str) -> str:
    if name == "id" or name.endswith("Id"):
        return r"(\d+)"
    return r"([^/]+)"


def compile_pattern(route_key: str) -> tuple[str, re.Pattern[str], tuple[str, ...]]:
    # "GET /admin/business/:id" -> ("GET", ^/admin/business/(\d+)$, ("id",))
    method, _, path = route_key.partition(" ")
    if not method or not path.startswith("/"):
        raise ValueError(f"Invalid route key: {route_key!r}")
    names: list[str] = []
    parts: list[str] = []
    last = 0
    for match in _PLACEHOLDER.finditer(path):
        parts.append(re.escape(path[last:match.start()]))
        names.append(match.group(1))
        parts.append(_segment_regex(match.group(1)))
        last = match.end()
    parts.append(re.escape(path[last:]))
    return method.upper(), re.compile("^" + "".join(parts) + "$"), tuple(names)


def normalize_path(path: str) -> str:
    return path[:-1] if path != "/" and path.endswith("/") else path


def define_routes(routes: Mapping[str, RouteHandler]) -> dict[str, RouteHandler]:
    return dict(routes)


class Router:
    def __init__(self, routes: Mapping[str, RouteHandler]) -> None:
        self._routes: list[CompiledRoute] = []
        for key, handler in routes.items():
            method, pattern, names = compile_pattern(key)
            self._routes.append(CompiledRoute(method, pattern, names, handler))

    def match(self, path: str, method: str) -> tuple[RouteHandler, RouteParams] | None:
        method = method.upper()
        for route in self._routes:
            if route.method != method:
                continue
            found = route.pattern.match(path)
            if found is not None:
                return route.handler, dict(zip(route.param_names, found.groups()))
        return None

    async def __call__(self, request: Request, path: str, method: str) -> Response | None:
        # None lets the caller choose the 404 policy.
        matched = self.match(path, method)
        if matched is None:
            return None
        handler, params = matched
        return await handler(request, params)


def create_router(routes: Mapping[str, RouteHandler]) -> Router:
    return Router(routes)
