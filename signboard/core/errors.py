from __future__ import annotations


class SignboardError(Exception):
    """Base error for Signboard."""


class ConfigError(SignboardError):
    """Missing or invalid process configuration."""


class DecryptionError(SignboardError):
    """Encrypted column could not be decrypted with the configured key."""


class CmsClientError(SignboardError):
    """Remote CMS request failure; http_status is 0 for network-level failures."""

    def __init__(self, message: str, http_status: int) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status

    def to_dict(self) -> dict[str, object]:
        return {"http_status": self.http_status, "message": self.message}


class CmsUnavailableError(CmsClientError):
    """Circuit breaker is open; the CMS is not being called."""

    def __init__(self, message: str = "CMS is temporarily unavailable") -> None:
        super().__init__(message, 503)
