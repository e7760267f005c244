from __future__ import annotations

from urllib.parse import unquote

import httpx
import pytest
from sqlalchemy import select

from signboard.domain.models import ActivityLogEntry
from signboard.persistence.db import SessionLocal
from signboard.tests.utils.cms import ScriptedCms
from signboard.tests.utils.factories import create_staff
from signboard.tests.utils.http import session_cookies


BOARD = {"menuId": 5, "name": "Lunch", "code": "L", "description": "Midday"}


async def _activity() -> list[str]:
    async with SessionLocal() as session:
        result = await session.execute(select(ActivityLogEntry.message).order_by(ActivityLogEntry.id))
        return list(result.scalars().all())


@pytest.fixture
async def owner():
    staff = await create_staff(with_cms=True)
    return staff["owner"]


def _use(cms_handler, replies: dict) -> ScriptedCms:
    cms = ScriptedCms(replies)
    cms_handler.handler = cms
    return cms


@pytest.mark.asyncio
async def test_menuboards_page_reports_non_json_cms_answer(client, cms_handler, owner) -> None:
    _use(cms_handler, {("GET", "/api/menuboards"): httpx.Response(200, text="<html>Sign in</html>")})
    response = await client.get("/admin/menuboards", headers=session_cookies(owner.token))
    assert response.status_code == 200
    assert "Invalid CMS response" in response.text
    assert "Sign in" not in response.text


@pytest.mark.asyncio
async def test_board_detail_lists_categories_and_products(client, cms_handler, owner) -> None:
    cms = _use(
        cms_handler,
        {
            ("GET", "/api/menuboards"): httpx.Response(200, json=[BOARD]),
            ("GET", "/api/menuboard/5/categories"): httpx.Response(200, json=[{"menuCategoryId": 8, "name": "Drinks"}]),
            ("GET", "/api/menuboard/8/products"): httpx.Response(
                200, json=[{"menuProductId": 21, "name": "Lemonade", "price": "2.50", "availability": 0}]
            ),
        },
    )
    response = await client.get("/admin/menuboard/5", headers=session_cookies(owner.token))
    assert response.status_code == 200
    for text in ("Lunch", "Drinks", "Lemonade", "2.50", "/admin/menuboard/5/category/8/product/21/edit"):
        assert text in response.text
    assert cms.sent("GET", "/api/menuboards")[0].url.params["menuId"] == "5"


@pytest.mark.asyncio
async def test_unknown_board_is_not_found(client, cms_handler, owner) -> None:
    _use(cms_handler, {("GET", "/api/menuboards"): httpx.Response(200, json=[])})
    response = await client.get("/admin/menuboard/5/edit", headers=session_cookies(owner.token))
    assert response.status_code == 404
    assert "Menu board not found" in response.text


@pytest.mark.asyncio
async def test_unknown_category_is_not_found(client, cms_handler, owner) -> None:
    _use(
        cms_handler,
        {
            ("GET", "/api/menuboards"): httpx.Response(200, json=[BOARD]),
            ("GET", "/api/menuboard/5/categories"): httpx.Response(200, json=[{"menuCategoryId": 8, "name": "Drinks"}]),
        },
    )
    response = await client.get("/admin/menuboard/5/category/99/edit", headers=session_cookies(owner.token))
    assert response.status_code == 404
    assert "Category not found" in response.text


@pytest.mark.asyncio
async def test_board_update_puts_then_logs(client, cms_handler, owner) -> None:
    cms = _use(cms_handler, {("PUT", "/api/menuboard/5"): httpx.Response(200, json={"menuId": 5})})
    response = await client.post(
        "/admin/menuboard/5",
        data={"name": "Dinner", "code": "D", "description": "", "csrf_token": owner.csrf_token},
        headers=session_cookies(owner.token),
    )
    assert response.status_code == 302
    assert unquote(response.headers["location"]) == "/admin/menuboard/5?success=Menu board updated"
    assert cms.json_bodies("PUT", "/api/menuboard/5") == [{"name": "Dinner", "code": "D", "description": ""}]
    assert await _activity() == ['Updated menu board "Dinner"']


@pytest.mark.asyncio
async def test_failed_board_update_logs_nothing(client, cms_handler, owner) -> None:
    _use(cms_handler, {("PUT", "/api/menuboard/5"): httpx.Response(500, text="boom")})
    response = await client.post(
        "/admin/menuboard/5",
        data={"name": "Dinner", "csrf_token": owner.csrf_token},
        headers=session_cookies(owner.token),
    )
    assert response.status_code == 302
    assert response.headers["location"].startswith("/admin/menuboard/5?error=")
    assert await _activity() == []


@pytest.mark.asyncio
async def test_category_and_product_mutations_hit_cms_endpoints(client, cms_handler, owner) -> None:
    cms = _use(
        cms_handler,
        {
            ("POST", "/api/menuboard/5/category"): httpx.Response(201, json={"menuCategoryId": 9}),
            ("POST", "/api/menuboard/9/product"): httpx.Response(201, json={"menuProductId": 30}),
            ("PUT", "/api/menuboard/30/product"): httpx.Response(200, json={"menuProductId": 30}),
            ("DELETE", "/api/menuboard/30/product"): httpx.Response(204),
            ("DELETE", "/api/menuboard/9/category"): httpx.Response(204),
        },
    )
    cookies = session_cookies(owner.token)
    csrf = owner.csrf_token
    product = {"name": "Fries", "price": "3.00", "availability": "0", "media_id": "", "csrf_token": csrf}

    steps = (
        ("/admin/menuboard/5/category", {"name": "Sides", "code": "", "media_id": "12", "csrf_token": csrf},
         "Category created"),
        ("/admin/menuboard/5/category/9/product", product, "Product created"),
        ("/admin/menuboard/5/category/9/product/30", {**product, "price": "3.50"}, "Product updated"),
        ("/admin/menuboard/5/category/9/product/30/delete", {"csrf_token": csrf}, "Product deleted"),
        ("/admin/menuboard/5/category/9/delete", {"csrf_token": csrf}, "Category deleted"),
    )
    for path, data, message in steps:
        response = await client.post(path, data=data, headers=cookies)
        assert response.status_code == 302, path
        assert unquote(response.headers["location"]) == f"/admin/menuboard/5?success={message}"

    assert cms.json_bodies("POST", "/api/menuboard/5/category") == [{"name": "Sides", "code": "", "mediaId": 12}]
    expected_product = {
        "menuCategoryId": 9,
        "name": "Fries",
        "price": "3.00",
        "description": "",
        "calories": "",
        "allergyInfo": "",
        "availability": 0,
    }
    assert cms.json_bodies("POST", "/api/menuboard/9/product") == [expected_product]
    assert cms.json_bodies("PUT", "/api/menuboard/30/product") == [{**expected_product, "price": "3.50"}]
    assert len(cms.sent("DELETE", "/api/menuboard/30/product")) == 1
    assert len(cms.sent("DELETE", "/api/menuboard/9/category")) == 1
    assert len(await _activity()) == 5


@pytest.mark.asyncio
async def test_invalid_product_form_skips_cms(client, cms_handler, owner) -> None:
    cms = _use(cms_handler, {})
    response = await client.post(
        "/admin/menuboard/5/category/9/product",
        data={"name": "Fries", "price": " ", "csrf_token": owner.csrf_token},
        headers=session_cookies(owner.token),
    )
    assert response.status_code == 302
    assert unquote(response.headers["location"]) == "/admin/menuboard/5?error=Price is required"
    assert cms.requests == []


@pytest.mark.asyncio
async def test_layout_list_detail_and_delete(client, cms_handler, owner) -> None:
    layout = {"layoutId": 3, "layout": "Breakfast", "publishedStatus": "Published"}
    cms = _use(
        cms_handler,
        {
            ("GET", "/api/layout"): httpx.Response(200, json=[layout]),
            ("DELETE", "/api/layout/3"): httpx.Response(204),
        },
    )
    cookies = session_cookies(owner.token)

    listing = await client.get("/admin/layouts", headers=cookies)
    assert listing.status_code == 200
    assert "Breakfast" in listing.text

    detail = await client.get("/admin/layout/3", headers=cookies)
    assert detail.status_code == 200
    assert "Published" in detail.text
    assert (await client.get("/admin/layout/4", headers=cookies)).status_code == 404

    response = await client.post("/admin/layout/3/delete", data={"csrf_token": owner.csrf_token}, headers=cookies)
    assert unquote(response.headers["location"]) == "/admin/layouts?success=Layout deleted"
    assert len(cms.sent("DELETE", "/api/layout/3")) == 1


@pytest.mark.asyncio
async def test_dataset_detail_shows_columns_and_sample_rows(client, cms_handler, owner) -> None:
    cms = _use(
        cms_handler,
        {
            ("GET", "/api/dataset"): httpx.Response(200, json=[{"dataSetId": 11, "dataSet": "Cafe-abc123"}]),
            ("GET", "/api/dataset/11/column"): httpx.Response(
                200, json=[{"heading": "name", "dataTypeId": 1}, {"heading": "price", "dataTypeId": 1}]
            ),
            ("GET", "/api/dataset/data/11"): httpx.Response(200, json=[{"id": 1, "name": "Tea", "price": "2.00"}]),
        },
    )
    cookies = session_cookies(owner.token)
    assert "Cafe-abc123" in (await client.get("/admin/datasets", headers=cookies)).text

    response = await client.get("/admin/dataset/11", headers=cookies)
    assert response.status_code == 200
    assert "Tea" in response.text
    assert "2.00" in response.text
    params = cms.sent("GET", "/api/dataset/data/11")[0].url.params
    assert (params["start"], params["length"]) == ("0", "10")


@pytest.mark.asyncio
async def test_media_upload_sends_multipart(client, cms_handler, owner) -> None:
    cms = _use(cms_handler, {("POST", "/api/library"): httpx.Response(200, json={"files": [{"mediaId": 77}]})})
    response = await client.post(
        "/admin/media/upload",
        data={"name": "Logo", "folder_id": "4", "csrf_token": owner.csrf_token},
        files={"file": ("logo.png", b"\x89PNG-bytes", "image/png")},
        headers=session_cookies(owner.token),
    )
    assert response.status_code == 302
    assert unquote(response.headers["location"]) == '/admin/media?success=Uploaded "Logo"'

    upload = cms.sent("POST", "/api/library")[0]
    assert upload.headers["content-type"].startswith("multipart/form-data")
    assert b'name="files"; filename="logo.png"' in upload.content
    assert b"\x89PNG-bytes" in upload.content
    assert b'name="folderId"' in upload.content
    assert await _activity() == ['Uploaded media "Logo"']


@pytest.mark.asyncio
async def test_media_upload_checks_csrf_and_file(client, cms_handler, owner) -> None:
    cms = _use(cms_handler, {})
    cookies = session_cookies(owner.token)
    forged = await client.post(
        "/admin/media/upload",
        data={"csrf_token": "forged"},
        files={"file": ("logo.png", b"data", "image/png")},
        headers=cookies,
    )
    assert forged.status_code == 403

    empty = await client.post(
        "/admin/media/upload",
        data={"csrf_token": owner.csrf_token},
        files={"file": ("logo.png", b"", "image/png")},
        headers=cookies,
    )
    assert empty.status_code == 400
    assert "Please select a file to upload" in empty.text
    assert cms.sent("POST", "/api/library") == []


@pytest.mark.asyncio
async def test_media_preview_streams_cms_bytes(client, cms_handler, owner) -> None:
    _use(
        cms_handler,
        {
            ("GET", "/api/library/download/77"): httpx.Response(
                200, content=b"PNGDATA", headers={"content-type": "image/png"}
            ),
            ("GET", "/api/library/download/78"): httpx.Response(
                200, content=b"<svg onload=alert(1)>", headers={"content-type": "image/svg+xml"}
            ),
        },
    )
    cookies = session_cookies(owner.token)

    response = await client.get("/admin/media/77/preview", headers=cookies)
    assert response.status_code == 200
    assert response.content == b"PNGDATA"
    assert response.headers["content-type"] == "image/png"
    assert response.headers["cache-control"] == "public, max-age=300"
    assert response.headers["x-content-type-options"] == "nosniff"

    svg = await client.get("/admin/media/78/preview", headers=cookies)
    assert svg.headers["content-type"] == "application/octet-stream"

    missing = await client.get("/admin/media/79/preview", headers=cookies)
    assert missing.status_code == 502
    assert "Failed to load preview" in missing.text


@pytest.mark.asyncio
async def test_media_list_filters_and_delete(client, cms_handler, owner) -> None:
    cms = _use(
        cms_handler,
        {
            ("GET", "/api/library"): httpx.Response(
                200,
                json=[
                    {"mediaId": 77, "name": "Logo", "mediaType": "image", "folderId": 4},
                    {"mediaId": 78, "name": "Promo", "mediaType": "video", "folderId": 1},
                ],
            ),
            ("GET", "/api/folders"): httpx.Response(200, json=[{"id": 4, "text": "Cafe"}]),
            ("DELETE", "/api/library/78"): httpx.Response(204),
        },
    )
    cookies = session_cookies(owner.token)

    filtered = await client.get("/admin/media?folderId=4", headers=cookies)
    assert "Logo" in filtered.text
    assert "Promo" not in filtered.text

    detail = await client.get("/admin/media/77", headers=cookies)
    assert '/admin/media/77/preview' in detail.text
    assert (await client.get("/admin/media/99", headers=cookies)).status_code == 404

    response = await client.post("/admin/media/78/delete", data={"csrf_token": owner.csrf_token}, headers=cookies)
    assert unquote(response.headers["location"]) == "/admin/media?success=Media deleted"
    assert len(cms.sent("DELETE", "/api/library/78")) == 1
