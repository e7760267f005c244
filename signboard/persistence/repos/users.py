from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.domain.models import BusinessUser, User
from signboard.services.auth.roles import AdminLevel
from signboard.services.crypto.fields import (
    decrypt,
    derive_kek,
    encrypt,
    hash_password,
    hmac_hash,
    verify_password,
    wrap_key,
)
from signboard.services.crypto.utils import sha256_b64


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def username_index(username: str) -> str:
    # Usernames are case-insensitive; the blind index is over the lowercase form.
    return hmac_hash(username.lower())


def hash_invite_code(code: str) -> str:
    return sha256_b64(code)


async def _insert_user(
    session: AsyncSession,
    *,
    username: str,
    admin_level: AdminLevel,
    password_hash: str,
    wrapped_data_key: str | None,
    invite_code_hash: str | None,
    invite_expiry: str | None,
) -> User:
    user = User(
        username_hash=encrypt(username.lower()),
        username_index=username_index(username),
        password_hash=encrypt(password_hash) if password_hash else "",
        wrapped_data_key=wrapped_data_key,
        admin_level=encrypt(admin_level.label),
        invite_code_hash=encrypt(invite_code_hash) if invite_code_hash else None,
        invite_expiry=encrypt(invite_expiry) if invite_expiry else None,
    )
    session.add(user)
    await session.commit()
    return user


async def create_user(
    session: AsyncSession,
    *,
    username: str,
    password_hash: str,
    wrapped_data_key: str | None,
    admin_level: AdminLevel,
) -> User:
    return await _insert_user(
        session,
        username=username,
        admin_level=admin_level,
        password_hash=password_hash,
        wrapped_data_key=wrapped_data_key,
        invite_code_hash=None,
        invite_expiry=None,
    )


async def create_invited_user(
    session: AsyncSession,
    *,
    username: str,
    admin_level: AdminLevel,
    invite_code_hash: str,
    invite_expiry: datetime,
) -> User:
    # No password yet; the invite code lets the user pick one.
    return await _insert_user(
        session,
        username=username,
        admin_level=admin_level,
        password_hash="",
        wrapped_data_key=None,
        invite_code_hash=invite_code_hash,
        invite_expiry=invite_expiry.isoformat(),
    )


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username_index == username_index(username)))
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    return await session.get(User, user_id)


async def is_username_taken(session: AsyncSession, username: str) -> bool:
    return await get_user_by_username(session, username) is not None


async def get_all_users(session: AsyncSession) -> list[User]:
    result = await session.execute(select(User).order_by(User.id.asc()))
    return list(result.scalars().all())


def decrypt_admin_level(user: User) -> AdminLevel:
    return AdminLevel.from_label(decrypt(user.admin_level))


def decrypt_username(user: User) -> str:
    return decrypt(user.username_hash)


def verify_user_password(user: User, password: str) -> str | None:
    # Returns the decrypted hash on success; callers derive the KEK from it.
    if not user.password_hash:
        return None
    decrypted_hash = decrypt(user.password_hash)
    if not decrypted_hash:
        return None
    return decrypted_hash if verify_password(password, decrypted_hash) else None


def has_password(user: User) -> bool:
    if not user.password_hash:
        return False
    return len(decrypt(user.password_hash)) > 0


async def set_user_password(session: AsyncSession, user: User, password: str) -> str:
    # Clears any outstanding invite; returns the new plaintext PBKDF2 string.
    password_hash = hash_password(password)
    user.password_hash = encrypt(password_hash)
    user.invite_code_hash = encrypt("")
    user.invite_expiry = encrypt("")
    await session.commit()
    return password_hash


async def activate_user(session: AsyncSession, user: User, *, data_key: bytes, password_hash: str) -> None:
    # Wrap the shared data key with a KEK derived from the user's password hash.
    user.wrapped_data_key = wrap_key(data_key, derive_kek(password_hash))
    await session.commit()


async def delete_user(session: AsyncSession, user_id: int) -> None:
    # Callers revoke the user's sessions through the SessionStore first.
    await session.execute(delete(BusinessUser).where(BusinessUser.user_id == user_id))
    await session.execute(delete(User).where(User.id == user_id))
    await session.commit()


async def get_user_by_invite_code(session: AsyncSession, code: str) -> User | None:
    # Invite hashes are encrypted with random nonces, so every row must be checked.
    code_hash = hash_invite_code(code)
    for user in await get_all_users(session):
        if not user.invite_code_hash:
            continue
        if decrypt(user.invite_code_hash) == code_hash:
            return user
    return None


def is_invite_valid(user: User) -> bool:
    if not user.invite_code_hash or not decrypt(user.invite_code_hash):
        return False
    if not user.invite_expiry:
        return False
    expiry = decrypt(user.invite_expiry)
    if not expiry:
        return False
    return datetime.fromisoformat(expiry) > _utc_now()
