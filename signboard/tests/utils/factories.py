from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from signboard.persistence.db import SessionLocal
from signboard.persistence.repos.settings import SETUP_COMPLETE, set_setting, update_cms_credentials
from signboard.persistence.repos.users import create_invited_user, create_user, hash_invite_code
from signboard.services.auth.roles import AdminLevel
from signboard.services.auth.sessions import SessionStore
from signboard.services.crypto.fields import derive_kek, generate_data_key, hash_password, wrap_key


DEFAULT_PASSWORD = "correct-horse-battery"
CMS_URL = "https://cms.example.test"


@dataclass(frozen=True)
class SeededUser:
    id: int
    username: str
    password: str
    token: str
    csrf_token: str

    @property
    def cookie(self) -> dict[str, str]:
        return {"cookie": f"__Host-session={self.token}"}


async def mark_setup_complete(*, with_cms: bool = False) -> None:
    async with SessionLocal() as session:
        if with_cms:
            await update_cms_credentials(
                session,
                api_url=CMS_URL,
                client_id="client-id",
                client_secret="client-secret",
            )
        await set_setting(session, SETUP_COMPLETE, "true")


async def create_signed_in_user(
    username: str,
    level: AdminLevel,
    *,
    password: str = DEFAULT_PASSWORD,
    data_key: bytes | None = None,
) -> SeededUser:
    # Provision an activated user plus a live session carrying the shared data key.
    data_key = data_key or generate_data_key()
    password_hash = hash_password(password)
    async with SessionLocal() as session:
        user = await create_user(
            session,
            username=username,
            password_hash=password_hash,
            wrapped_data_key=wrap_key(data_key, derive_kek(password_hash)),
            admin_level=level,
        )
        store = SessionStore(cache_ttl_s=0)
        token = await store.create_new(session, user.id, data_key=data_key)
        record = await store.get(session, token)
        assert record is not None
        return SeededUser(
            id=user.id,
            username=username,
            password=password,
            token=token,
            csrf_token=record.csrf_token,
        )


async def create_staff(*, with_cms: bool = False) -> dict[str, SeededUser]:
    # Owner, manager and user sharing one data key, as after normal onboarding.
    await mark_setup_complete(with_cms=with_cms)
    data_key = generate_data_key()
    return {
        "owner": await create_signed_in_user("owner", AdminLevel.OWNER, data_key=data_key),
        "manager": await create_signed_in_user("manager", AdminLevel.MANAGER, data_key=data_key),
        "user": await create_signed_in_user("alice", AdminLevel.USER, data_key=data_key),
    }


async def create_invite(username: str, code: str, *, level: AdminLevel = AdminLevel.USER, expired: bool = False) -> int:
    offset = timedelta(days=-1) if expired else timedelta(days=7)
    async with SessionLocal() as session:
        user = await create_invited_user(
            session,
            username=username,
            admin_level=level,
            invite_code_hash=hash_invite_code(code),
            invite_expiry=datetime.now(timezone.utc) + offset,
        )
        return user.id
