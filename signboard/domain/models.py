from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    # Sensitive values are stored as enc:1: ciphertext by the settings repo.
    value: Mapped[str] = mapped_column(Text, nullable=False)


class Session(Base):
    __tablename__ = "sessions"

    # Store only the token hash so a database leak cannot replay sessions.
    token_hash: Mapped[str] = mapped_column(String, primary_key=True)
    csrf_token: Mapped[str] = mapped_column(String, nullable=False)
    # Epoch milliseconds; expired rows are removed lazily on read.
    expires: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Data key wrapped with the raw session token, for encryption-at-rest key recovery.
    wrapped_data_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)


class LoginAttempt(Base):
    __tablename__ = "login_attempts"

    ip: Mapped[str] = mapped_column(String, primary_key=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_until: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Encrypted lowercase username for display.
    username_hash: Mapped[str] = mapped_column(Text, nullable=False)
    # HMAC blind index so lookups never need to decrypt every row.
    username_index: Mapped[str] = mapped_column(String, unique=True, index=True)
    # Encrypted PBKDF2 hash; empty until an invited user sets a password.
    password_hash: Mapped[str] = mapped_column(Text, nullable=False, default="")
    wrapped_data_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Encrypted role name (owner/manager/user).
    admin_level: Mapped[str] = mapped_column(Text, nullable=False)
    invite_code_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    invite_expiry: Mapped[str | None] = mapped_column(Text, nullable=True)


class ActivityLogEntry(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_actor_created", "actor_user_id", "created"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created: Mapped[str] = mapped_column(String, nullable=False)
    actor_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    # LOGIN, LOGOUT, LOGIN_FAILED, CREATE, UPDATE, DELETE, IMPERSONATE, STOP_IMPERSONATE.
    action: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    detail: Mapped[str] = mapped_column(Text, nullable=False)


class CacheEntry(Base):
    __tablename__ = "cache"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    # JSON-serialized CMS response body.
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)


class Business(Base):
    __tablename__ = "businesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    xibo_folder_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    folder_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    xibo_dataset_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)


class BusinessUser(Base):
    __tablename__ = "business_users"

    business_id: Mapped[int] = mapped_column(Integer, ForeignKey("businesses.id"), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), primary_key=True)


class Screen(Base):
    __tablename__ = "screens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    business_id: Mapped[int] = mapped_column(Integer, ForeignKey("businesses.id"), index=True)
    xibo_display_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)


class MenuScreen(Base):
    __tablename__ = "menu_screens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    screen_id: Mapped[int] = mapped_column(Integer, ForeignKey("screens.id"), index=True)
    template_id: Mapped[str] = mapped_column(String, nullable=False)
    display_time: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xibo_layout_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    xibo_campaign_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
