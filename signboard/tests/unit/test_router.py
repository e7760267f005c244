from __future__ import annotations

import pytest
from starlette.responses import PlainTextResponse

from signboard.apps.web.router import compile_pattern, create_router, define_routes, normalize_path


def _handler(label: str):
    async def handler(request, params):
        return PlainTextResponse(f"{label}:{sorted(params.items())}")

    return handler


def test_id_placeholders_match_digits_only() -> None:
    method, pattern, names = compile_pattern("POST /admin/business/:businessId/screen/:id/delete")
    assert method == "POST"
    assert names == ("businessId", "id")
    assert pattern.match("/admin/business/12/screen/7/delete").groups() == ("12", "7")
    assert pattern.match("/admin/business/abc/screen/7/delete") is None


def test_named_placeholder_matches_any_segment() -> None:
    _method, pattern, names = compile_pattern("GET /join/:code")
    assert names == ("code",)
    assert pattern.match("/join/AbC-123_x").groups() == ("AbC-123_x",)
    assert pattern.match("/join/a/b") is None


def test_invalid_route_key_is_rejected() -> None:
    with pytest.raises(ValueError):
        compile_pattern("GET admin")


def test_first_registered_match_wins_and_method_must_match() -> None:
    router = create_router(
        define_routes(
            {
                "GET /admin/business/create": _handler("create"),
                "GET /admin/business/:id": _handler("detail"),
                "POST /admin/business/:id": _handler("update"),
            }
        )
    )
    handler, params = router.match("/admin/business/create", "GET")
    assert params == {}
    handler, params = router.match("/admin/business/42", "get")
    assert params == {"id": "42"}
    assert router.match("/admin/business/42", "DELETE") is None
    assert router.match("/admin/business/42/extra", "GET") is None


@pytest.mark.asyncio
async def test_router_returns_none_when_nothing_matches() -> None:
    router = create_router({"GET /admin": _handler("admin")})
    assert await router(None, "/missing", "GET") is None
    response = await router(None, "/admin", "GET")
    assert response.body == b"admin:[]"


def test_normalize_path_strips_trailing_slash() -> None:
    assert normalize_path("/admin/") == "/admin"
    assert normalize_path("/") == "/"
