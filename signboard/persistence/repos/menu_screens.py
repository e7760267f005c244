from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.domain.models import MenuScreen
from signboard.services.crypto.fields import decrypt, encrypt


@dataclass(frozen=True)
class DisplayMenuScreen:
    id: int
    name: str
    screen_id: int
    template_id: str
    display_time: int
    sort_order: int
    xibo_layout_id: int | None
    created_at: str


def to_display_menu_screen(menu_screen: MenuScreen) -> DisplayMenuScreen:
    return DisplayMenuScreen(
        id=menu_screen.id,
        name=decrypt(menu_screen.name),
        screen_id=menu_screen.screen_id,
        template_id=menu_screen.template_id,
        display_time=menu_screen.display_time,
        sort_order=menu_screen.sort_order,
        xibo_layout_id=menu_screen.xibo_layout_id,
        created_at=decrypt(menu_screen.created_at),
    )


async def create_menu_screen(
    session: AsyncSession,
    *,
    name: str,
    screen_id: int,
    template_id: str,
    display_time: int,
    sort_order: int,
    xibo_layout_id: int | None = None,
) -> MenuScreen:
    menu_screen = MenuScreen(
        name=encrypt(name),
        screen_id=screen_id,
        template_id=template_id,
        display_time=display_time,
        sort_order=sort_order,
        xibo_layout_id=xibo_layout_id,
        created_at=encrypt(datetime.now(timezone.utc).isoformat()),
    )
    session.add(menu_screen)
    await session.commit()
    return menu_screen


async def get_menu_screen_by_id(session: AsyncSession, menu_screen_id: int) -> MenuScreen | None:
    return await session.get(MenuScreen, menu_screen_id)


async def get_menu_screens_for_screen(session: AsyncSession, screen_id: int) -> list[MenuScreen]:
    result = await session.execute(
        select(MenuScreen)
        .where(MenuScreen.screen_id == screen_id)
        .order_by(MenuScreen.sort_order.asc(), MenuScreen.id.asc())
    )
    return list(result.scalars().all())


async def delete_menu_screen(session: AsyncSession, menu_screen_id: int) -> None:
    await session.execute(delete(MenuScreen).where(MenuScreen.id == menu_screen_id))
    await session.commit()
