from __future__ import annotations

from itertools import count
from urllib.parse import unquote

import httpx
import pytest
from sqlalchemy import select

from signboard.domain.models import AuditEvent, MenuScreen
from signboard.persistence.db import SessionLocal
from signboard.persistence.repos.businesses import assign_user_to_business, create_business, create_screen
from signboard.persistence.repos.menu_screens import create_menu_screen
from signboard.services.crypto.fields import decrypt
from signboard.tests.utils.cms import ScriptedCms
from signboard.tests.utils.factories import create_staff
from signboard.tests.utils.http import session_cookies


DATASET_ROWS = [
    {"id": 1, "name": "Tea", "price": "2.00"},
    {"id": 2, "name": "Cake", "price": "3.00"},
    {"id": 3, "name": "Soup", "price": "4.00"},
]


@pytest.fixture
async def seeded():
    # A business with a dataset, one screen, and the plain user as its only member.
    staff = await create_staff(with_cms=True)
    async with SessionLocal() as session:
        business = await create_business(session, name="Cafe", xibo_dataset_id=11)
        screen = await create_screen(session, business_id=business.id, name="Counter")
        await assign_user_to_business(session, business.id, staff["user"].id)
        return staff, business.id, screen.id


def _builder_cms() -> ScriptedCms:
    region_ids = count(100)

    def _region(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"regions": [{"regionId": next(region_ids)}]})

    replies = {
        ("GET", "/api/dataset/data/11"): httpx.Response(200, json=DATASET_ROWS),
        ("GET", "/api/resolution"): httpx.Response(200, json=[{"resolutionId": 1, "width": 1920, "height": 1080}]),
        ("POST", "/api/resolution"): httpx.Response(201, json={"resolutionId": 9}),
        ("POST", "/api/layout"): httpx.Response(201, json={"layoutId": 50}),
        ("POST", "/api/region/50"): _region,
        ("PUT", "/api/layout/publish/50"): httpx.Response(200, json={}),
    }
    for region_id in range(100, 110):
        replies[("POST", f"/api/playlist/widget/text/{region_id}")] = httpx.Response(201, json={"widgetId": region_id})
    return ScriptedCms(replies)


async def _menu_screens() -> list[MenuScreen]:
    async with SessionLocal() as session:
        return list((await session.execute(select(MenuScreen))).scalars().all())


def _create_path(business_id: int, screen_id: int) -> str:
    return f"/dashboard/business/{business_id}/screen/{screen_id}/menu/create"


@pytest.mark.asyncio
async def test_create_menu_screen_builds_and_publishes_layout(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    cms = _builder_cms()
    cms_handler.handler = cms

    page = await client.get(_create_path(business_id, screen_id), headers=session_cookies(user.token))
    assert page.status_code == 200
    assert "Soup" in page.text

    response = await client.post(
        _create_path(business_id, screen_id),
        data={
            "name": "Breakfast",
            "template_id": "list-6",
            "display_time": "15",
            "sort_order": "2",
            "product_ids": ["3", "1"],
            "csrf_token": user.csrf_token,
        },
        headers=session_cookies(user.token),
    )
    menus = f"/dashboard/business/{business_id}/screen/{screen_id}/menus"
    assert response.status_code == 302
    assert unquote(response.headers["location"]) == f"{menus}?success=Menu screen created"

    assert cms.json_bodies("POST", "/api/resolution") == [
        {"resolution": "Portrait 1080x1920", "width": 1080, "height": 1920}
    ]
    assert cms.json_bodies("POST", "/api/layout") == [
        {"name": "Breakfast", "description": "Auto-generated from template list-6", "resolutionId": 9}
    ]
    regions = cms.json_bodies("POST", "/api/region/50")
    assert len(regions) == 3
    assert regions[0] == {"width": 900, "height": 200, "top": 0, "left": 90}
    assert regions[1]["top"] == 200
    widgets = [
        body["name"]
        for region_id in (100, 101, 102)
        for body in cms.json_bodies("POST", f"/api/playlist/widget/text/{region_id}")
    ]
    assert widgets == ["Breakfast", "Tea - 2.00", "Soup - 4.00"]
    assert len(cms.sent("PUT", "/api/layout/publish/50")) == 1

    [menu_screen] = await _menu_screens()
    assert menu_screen.xibo_layout_id == 50
    assert (menu_screen.display_time, menu_screen.sort_order) == (15, 2)
    assert menu_screen.name != "Breakfast"
    assert decrypt(menu_screen.name) == "Breakfast"

    listing = await client.get(menus, headers=session_cookies(user.token))
    assert "Breakfast" in listing.text
    assert "Simple List" in listing.text

    async with SessionLocal() as session:
        actions = (await session.execute(select(AuditEvent.action, AuditEvent.resource_type))).all()
    assert ("CREATE", "menu_screen") in [tuple(row) for row in actions]


@pytest.mark.asyncio
async def test_too_many_products_is_rejected_before_the_cms(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    cms = _builder_cms()
    cms_handler.handler = cms

    response = await client.post(
        _create_path(business_id, screen_id),
        data={
            "name": "Everything",
            "template_id": "list-6",
            "product_ids": [str(i) for i in range(1, 8)],
            "csrf_token": user.csrf_token,
        },
        headers=session_cookies(user.token),
    )
    assert "Too many products selected (max 6)" in unquote(response.headers["location"])
    assert cms.requests == []
    assert await _menu_screens() == []


@pytest.mark.asyncio
async def test_unknown_template_is_rejected(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    cms_handler.handler = _builder_cms()

    response = await client.post(
        _create_path(business_id, screen_id),
        data={"name": "Odd", "template_id": "poster", "csrf_token": user.csrf_token},
        headers=session_cookies(user.token),
    )
    assert unquote(response.headers["location"]).endswith("?error=Invalid template")


@pytest.mark.asyncio
async def test_failed_layout_build_writes_no_row(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    cms = _builder_cms()
    cms.reply("POST", "/api/layout", httpx.Response(500, text="layout store down"))
    cms_handler.handler = cms

    response = await client.post(
        _create_path(business_id, screen_id),
        data={"name": "Lunch", "template_id": "grid-3x4", "csrf_token": user.csrf_token},
        headers=session_cookies(user.token),
    )
    assert response.status_code == 302
    assert "?error=" in response.headers["location"]
    assert await _menu_screens() == []


@pytest.mark.asyncio
async def test_menus_require_membership_and_matching_screen(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    async with SessionLocal() as session:
        other = await create_business(session, name="Bistro")
        other_screen = await create_screen(session, business_id=other.id, name="Window")
        await assign_user_to_business(session, other.id, staff["user"].id)
        other_screen_id = other_screen.id

    outsider = await client.get(
        f"/dashboard/business/{business_id}/screen/{screen_id}/menus",
        headers=session_cookies(staff["manager"].token),
    )
    assert outsider.status_code == 403

    crossed = await client.get(
        f"/dashboard/business/{business_id}/screen/{other_screen_id}/menus",
        headers=session_cookies(staff["user"].token),
    )
    assert crossed.status_code == 404
    assert "Screen not found" in crossed.text


async def _seed_menu_screen(screen_id: int, layout_id: int | None) -> int:
    async with SessionLocal() as session:
        menu_screen = await create_menu_screen(
            session,
            name="Dinner",
            screen_id=screen_id,
            template_id="grid-3x4",
            display_time=10,
            sort_order=0,
            xibo_layout_id=layout_id,
        )
        return menu_screen.id


@pytest.mark.asyncio
async def test_delete_tolerates_layout_already_gone(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    menu_screen_id = await _seed_menu_screen(screen_id, 50)
    cms = ScriptedCms({("DELETE", "/api/layout/50"): httpx.Response(404, text="no such layout")})
    cms_handler.handler = cms

    response = await client.post(
        f"/dashboard/business/{business_id}/screen/{screen_id}/menu/{menu_screen_id}/delete",
        data={"csrf_token": user.csrf_token},
        headers=session_cookies(user.token),
    )
    assert unquote(response.headers["location"]).endswith("?success=Menu screen deleted")
    assert len(cms.sent("DELETE", "/api/layout/50")) == 1
    assert await _menu_screens() == []


@pytest.mark.asyncio
async def test_delete_keeps_row_when_cms_fails(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    menu_screen_id = await _seed_menu_screen(screen_id, 50)
    cms_handler.handler = ScriptedCms({("DELETE", "/api/layout/50"): httpx.Response(500, text="boom")})

    response = await client.post(
        f"/dashboard/business/{business_id}/screen/{screen_id}/menu/{menu_screen_id}/delete",
        data={"csrf_token": user.csrf_token},
        headers=session_cookies(user.token),
    )
    assert "?error=" in response.headers["location"]
    assert len(await _menu_screens()) == 1


@pytest.mark.asyncio
async def test_delete_without_layout_skips_cms(client, cms_handler, seeded) -> None:
    staff, business_id, screen_id = seeded
    user = staff["user"]
    menu_screen_id = await _seed_menu_screen(screen_id, None)
    cms = ScriptedCms()
    cms_handler.handler = cms

    response = await client.post(
        f"/dashboard/business/{business_id}/screen/{screen_id}/menu/{menu_screen_id}/delete",
        data={"csrf_token": user.csrf_token},
        headers=session_cookies(user.token),
    )
    assert unquote(response.headers["location"]).endswith("?success=Menu screen deleted")
    assert cms.requests == []
    assert await _menu_screens() == []
