"""Field-level encryption, password hashing and key wrapping.

Every sensitive column is stored as ``enc:1:<nonce>:<ciphertext>`` using
AES-256-GCM keyed by ``DB_ENCRYPTION_KEY``. Lookups on encrypted columns go
through an HMAC blind index instead of decrypting rows.
"""

from __future__ import annotations

from functools import lru_cache
import hashlib
import hmac
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from signboard.core.config import get_settings
from signboard.core.errors import ConfigError, DecryptionError
from signboard.services.crypto.utils import (
    b64decode_str,
    b64encode_bytes,
    b64url_token,
    decode_key_material,
)


ENCRYPTION_PREFIX = "enc:1:"
WRAPPED_KEY_PREFIX = "wk:1:"
PASSWORD_PREFIX = "pbkdf2"
_PBKDF2_HASH_LENGTH = 32
_NONCE_LENGTH = 12


def constant_time_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def generate_secure_token() -> str:
    # 32 random bytes, url-safe; used for sessions, CSRF and invite codes.
    return b64url_token(secrets.token_bytes(32))


@lru_cache
def _key_bytes(key_string: str) -> bytes:
    try:
        key = decode_key_material(key_string)
    except ValueError as exc:
        raise ConfigError(f"DB_ENCRYPTION_KEY is invalid: {exc}") from exc
    if len(key) != 32:
        raise ConfigError(f"DB_ENCRYPTION_KEY must be 32 bytes (256 bits), got {len(key)} bytes")
    return key


def _encryption_key() -> bytes:
    key_string = get_settings().db_encryption_key
    if not key_string:
        raise ConfigError("DB_ENCRYPTION_KEY environment variable is required for database encryption")
    return _key_bytes(key_string)


def validate_encryption_key() -> None:
    # Fail at startup rather than on the first encrypted write.
    _encryption_key()


def _seal(key: bytes, plaintext: bytes) -> str:
    nonce = os.urandom(_NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return f"{b64encode_bytes(nonce)}:{b64encode_bytes(ciphertext)}"


def _open(key: bytes, sealed: str) -> bytes:
    nonce_b64, sep, ciphertext_b64 = sealed.partition(":")
    if not sep:
        raise DecryptionError("Invalid encrypted data format: missing IV separator")
    try:
        return AESGCM(key).decrypt(b64decode_str(nonce_b64), b64decode_str(ciphertext_b64), None)
    except (InvalidTag, ValueError) as exc:
        raise DecryptionError("Encrypted value could not be decrypted") from exc


def encrypt(plaintext: str) -> str:
    return ENCRYPTION_PREFIX + _seal(_encryption_key(), plaintext.encode("utf-8"))


def decrypt(encrypted: str) -> str:
    if not encrypted.startswith(ENCRYPTION_PREFIX):
        raise DecryptionError("Invalid encrypted data format")
    return _open(_encryption_key(), encrypted[len(ENCRYPTION_PREFIX):]).decode("utf-8")


def try_decrypt(value: str) -> str:
    # Pass through legacy plaintext values.
    return decrypt(value) if value.startswith(ENCRYPTION_PREFIX) else value


def hmac_hash(value: str) -> str:
    # Deterministic keyed hash for blind indexes.
    digest = hmac.new(_encryption_key(), value.encode("utf-8"), hashlib.sha256).digest()
    return b64encode_bytes(digest)


def _derive_pbkdf2(password: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=_PBKDF2_HASH_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def hash_password(password: str) -> str:
    """Return ``pbkdf2:<iterations>:<b64 salt>:<b64 hash>``."""
    iterations = get_settings().pbkdf2_iterations
    salt = os.urandom(16)
    derived = _derive_pbkdf2(password, salt, iterations)
    return f"{PASSWORD_PREFIX}:{iterations}:{b64encode_bytes(salt)}:{b64encode_bytes(derived)}"


def verify_password(password: str, stored: str) -> bool:
    parts = stored.split(":")
    if len(parts) != 4 or parts[0] != PASSWORD_PREFIX:
        return False
    try:
        iterations = int(parts[1])
        salt = b64decode_str(parts[2])
        expected = b64decode_str(parts[3])
    except ValueError:
        return False
    if len(expected) != _PBKDF2_HASH_LENGTH or iterations <= 0:
        return False
    computed = _derive_pbkdf2(password, salt, iterations)
    return hmac.compare_digest(computed, expected)


def generate_data_key() -> bytes:
    return AESGCM.generate_key(bit_length=256)


def derive_kek(password_hash: str) -> bytes:
    # Key-encryption key bound to both the stored password hash and the DB key.
    return hmac.new(_encryption_key(), f"kek:{password_hash}".encode("utf-8"), hashlib.sha256).digest()


def wrap_key(data_key: bytes, kek: bytes) -> str:
    return WRAPPED_KEY_PREFIX + _seal(kek, data_key)


def unwrap_key(wrapped: str, kek: bytes) -> bytes:
    if not wrapped.startswith(WRAPPED_KEY_PREFIX):
        raise DecryptionError("Invalid wrapped key format")
    return _open(kek, wrapped[len(WRAPPED_KEY_PREFIX):])


def _token_kek(token: str) -> bytes:
    return hashlib.sha256(f"session-kek:{token}".encode("utf-8")).digest()


def wrap_key_with_token(data_key: bytes, token: str) -> str:
    # Sessions carry the data key wrapped by their own raw token.
    return wrap_key(data_key, _token_kek(token))


def unwrap_key_with_token(wrapped: str, token: str) -> bytes:
    return unwrap_key(wrapped, _token_kek(token))
