from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from signboard.persistence.repos.settings import SETUP_COMPLETE, set_setting, update_cms_credentials
from signboard.persistence.repos.users import create_user
from signboard.services.auth.roles import AdminLevel
from signboard.services.crypto.fields import derive_kek, generate_data_key, hash_password, wrap_key


logger = logging.getLogger(__name__)


async def complete_setup(
    session: AsyncSession,
    *,
    username: str,
    password: str,
    api_url: str,
    client_id: str,
    client_secret: str,
) -> None:
    """Create the first owner and store CMS credentials, then mark setup done.

    The owner receives a fresh data key wrapped with a KEK derived from their
    password hash; every later session and activated user inherits that key.
    """
    password_hash = hash_password(password)
    data_key = generate_data_key()
    await create_user(
        session,
        username=username,
        password_hash=password_hash,
        wrapped_data_key=wrap_key(data_key, derive_kek(password_hash)),
        admin_level=AdminLevel.OWNER,
    )
    await update_cms_credentials(
        session,
        api_url=api_url,
        client_id=client_id,
        client_secret=client_secret,
    )
    await set_setting(session, SETUP_COMPLETE, "true")
    logger.info("setup_completed cms_configured=%s", bool(api_url and client_id and client_secret))
