from __future__ import annotations

import base64
import binascii
import hashlib


def decode_key_material(value: str) -> bytes:
    """Decode base64 key material into raw bytes."""
    stripped = value.strip()
    if not stripped:
        raise ValueError("key material is empty")
    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("key material must be base64") from exc


def b64encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def b64decode_str(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"))


def b64url_token(value: bytes) -> str:
    # Cookie- and URL-safe encoding without padding.
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def sha256_b64(value: str) -> str:
    return b64encode_bytes(hashlib.sha256(value.encode("utf-8")).digest())
