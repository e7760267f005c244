from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CmsConfig:
    # Decrypted credentials for the client-credentials grant.
    api_url: str
    client_id: str
    client_secret: str

    @property
    def base_url(self) -> str:
        return self.api_url.rstrip("/")


@dataclass
class TokenStore:
    """Bearer token cache for one CMS; shared by every client in the process."""

    access_token: str | None = None
    expires_at_ms: int = 0

    def is_valid(self, now_ms: int) -> bool:
        return self.access_token is not None and now_ms < self.expires_at_ms

    def store(self, *, access_token: str, expires_in_s: int, now_ms: int, margin_ms: int) -> None:
        # Refresh ahead of the reported expiry.
        self.access_token = access_token
        self.expires_at_ms = now_ms + int(expires_in_s) * 1000 - margin_ms

    def clear(self) -> None:
        self.access_token = None
        self.expires_at_ms = 0


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    message: str
    version: str | None = None


@dataclass(frozen=True)
class DashboardStatus:
    connected: bool
    version: str | None = None
    menu_board_count: int | None = None
    media_count: int | None = None
    layout_count: int | None = None
    dataset_count: int | None = None


@dataclass(frozen=True)
class RawResponse:
    # Binary passthrough for media previews; never cached.
    content: bytes
    content_type: str
