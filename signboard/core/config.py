from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "signboard"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./signboard.db"
    # Base64 of 32 raw bytes; encrypts every sensitive column at rest.
    db_encryption_key: str = ""
    # Requests whose Host header does not match are rejected.
    allowed_domain: str = "localhost"
    # Bind address for the bundled uvicorn runner.
    host: str = "127.0.0.1"
    port: int = 3000

    # Session lifetime for login, invite-accept and impersonation sessions.
    session_ttl_hours: int = 24
    # Short caches keep revocations responsive while sparing per-request lookups.
    session_cache_ttl_s: int = 10
    auth_session_cache_ttl_s: int = 10
    settings_cache_ttl_s: int = 5
    # Per-IP login throttling.
    login_max_attempts: int = 5
    login_lockout_minutes: int = 15
    # Random 100-200ms delay on login; tests switch it off.
    login_delay_enabled: bool = True
    pbkdf2_iterations: int = 600_000
    invite_ttl_days: int = 7
    # Lifetime of the parked admin cookie while impersonating.
    impersonation_cookie_max_age_s: int = 86_400

    # Remote CMS client tuning.
    cms_cache_ttl_ms: int = 600_000
    cms_token_margin_s: int = 60
    cms_http_timeout_s: float = 30.0
    # Circuit breaker thresholds for the CMS integration.
    cb_failure_threshold: int = 5
    cb_recovery_seconds: int = 30
    # Backoff schedule for transient CMS failures; one retry per entry.
    ext_retry_delays_ms: list[int] = [100, 200, 400]


@lru_cache
def get_settings() -> Settings:
    return Settings()
