from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.domain.models import Business, BusinessUser, MenuScreen, Screen
from signboard.services.crypto.fields import decrypt, encrypt


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DisplayBusiness:
    id: int
    name: str
    xibo_folder_id: int | None
    folder_name: str | None
    xibo_dataset_id: int | None
    created_at: str


@dataclass(frozen=True)
class DisplayScreen:
    id: int
    name: str
    business_id: int
    xibo_display_id: int | None
    created_at: str


def to_display_business(business: Business) -> DisplayBusiness:
    return DisplayBusiness(
        id=business.id,
        name=decrypt(business.name),
        xibo_folder_id=business.xibo_folder_id,
        folder_name=decrypt(business.folder_name) if business.folder_name else None,
        xibo_dataset_id=business.xibo_dataset_id,
        created_at=decrypt(business.created_at),
    )


def to_display_screen(screen: Screen) -> DisplayScreen:
    return DisplayScreen(
        id=screen.id,
        name=decrypt(screen.name),
        business_id=screen.business_id,
        xibo_display_id=screen.xibo_display_id,
        created_at=decrypt(screen.created_at),
    )


async def create_business(
    session: AsyncSession,
    *,
    name: str,
    xibo_folder_id: int | None = None,
    folder_name: str | None = None,
    xibo_dataset_id: int | None = None,
) -> Business:
    business = Business(
        name=encrypt(name),
        xibo_folder_id=xibo_folder_id,
        folder_name=encrypt(folder_name) if folder_name else None,
        xibo_dataset_id=xibo_dataset_id,
        created_at=encrypt(_utc_now_iso()),
    )
    session.add(business)
    await session.commit()
    return business


async def get_business_by_id(session: AsyncSession, business_id: int) -> Business | None:
    return await session.get(Business, business_id)


async def get_all_businesses(session: AsyncSession) -> list[Business]:
    result = await session.execute(select(Business).order_by(Business.id.asc()))
    return list(result.scalars().all())


async def get_businesses_for_user(session: AsyncSession, user_id: int) -> list[Business]:
    result = await session.execute(
        select(Business)
        .join(BusinessUser, BusinessUser.business_id == Business.id)
        .where(BusinessUser.user_id == user_id)
        .order_by(Business.id.asc())
    )
    return list(result.scalars().all())


async def update_business(session: AsyncSession, business: Business, *, name: str) -> None:
    business.name = encrypt(name)
    await session.commit()


async def delete_business(session: AsyncSession, business_id: int) -> None:
    # Children first: menu screens, screens, memberships, then the business.
    screen_ids = select(Screen.id).where(Screen.business_id == business_id)
    await session.execute(delete(MenuScreen).where(MenuScreen.screen_id.in_(screen_ids)))
    await session.execute(delete(Screen).where(Screen.business_id == business_id))
    await session.execute(delete(BusinessUser).where(BusinessUser.business_id == business_id))
    await session.execute(delete(Business).where(Business.id == business_id))
    await session.commit()


async def assign_user_to_business(session: AsyncSession, business_id: int, user_id: int) -> None:
    existing = await session.get(BusinessUser, (business_id, user_id))
    if existing is None:
        session.add(BusinessUser(business_id=business_id, user_id=user_id))
        await session.commit()


async def remove_user_from_business(session: AsyncSession, business_id: int, user_id: int) -> None:
    await session.execute(
        delete(BusinessUser).where(
            BusinessUser.business_id == business_id,
            BusinessUser.user_id == user_id,
        )
    )
    await session.commit()


async def get_business_user_ids(session: AsyncSession, business_id: int) -> list[int]:
    result = await session.execute(
        select(BusinessUser.user_id).where(BusinessUser.business_id == business_id)
    )
    return list(result.scalars().all())


async def is_user_assigned(session: AsyncSession, business_id: int, user_id: int) -> bool:
    return await session.get(BusinessUser, (business_id, user_id)) is not None


async def create_screen(
    session: AsyncSession,
    *,
    business_id: int,
    name: str,
    xibo_display_id: int | None = None,
) -> Screen:
    screen = Screen(
        name=encrypt(name),
        business_id=business_id,
        xibo_display_id=xibo_display_id,
        created_at=encrypt(_utc_now_iso()),
    )
    session.add(screen)
    await session.commit()
    return screen


async def get_screen_by_id(session: AsyncSession, screen_id: int) -> Screen | None:
    return await session.get(Screen, screen_id)


async def get_screens_for_business(session: AsyncSession, business_id: int) -> list[Screen]:
    result = await session.execute(
        select(Screen).where(Screen.business_id == business_id).order_by(Screen.id.asc())
    )
    return list(result.scalars().all())


async def delete_screen(session: AsyncSession, screen_id: int) -> None:
    await session.execute(delete(MenuScreen).where(MenuScreen.screen_id == screen_id))
    await session.execute(delete(Screen).where(Screen.id == screen_id))
    await session.commit()


async def get_assigned_display_ids(session: AsyncSession) -> set[int]:
    result = await session.execute(select(Screen.xibo_display_id).where(Screen.xibo_display_id.is_not(None)))
    return {display_id for display_id in result.scalars().all() if display_id is not None}
