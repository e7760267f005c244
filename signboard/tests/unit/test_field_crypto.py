from __future__ import annotations

import pytest

from signboard.core.errors import DecryptionError
from signboard.services.crypto.fields import (
    ENCRYPTION_PREFIX,
    constant_time_equal,
    decrypt,
    derive_kek,
    encrypt,
    generate_data_key,
    generate_secure_token,
    hash_password,
    hmac_hash,
    try_decrypt,
    unwrap_key,
    unwrap_key_with_token,
    verify_password,
    wrap_key,
    wrap_key_with_token,
)


def test_encrypt_uses_random_nonce() -> None:
    first = encrypt("Burger Barn")
    second = encrypt("Burger Barn")
    assert first.startswith(ENCRYPTION_PREFIX)
    assert first != second
    assert decrypt(first) == decrypt(second) == "Burger Barn"


def test_decrypt_rejects_tampered_and_unprefixed_values() -> None:
    sealed = encrypt("secret")
    tampered = sealed[:-4] + ("AAAA" if not sealed.endswith("AAAA") else "BBBB")
    with pytest.raises(DecryptionError):
        decrypt(tampered)
    with pytest.raises(DecryptionError):
        decrypt("plain")
    assert try_decrypt("plain") == "plain"


def test_hmac_blind_index_is_deterministic() -> None:
    assert hmac_hash("owner") == hmac_hash("owner")
    assert hmac_hash("owner") != hmac_hash("Owner")


def test_password_hash_format_and_verification() -> None:
    stored = hash_password("hunter22!")
    prefix, iterations, _salt, _hash = stored.split(":")
    assert prefix == "pbkdf2"
    assert int(iterations) > 0
    assert verify_password("hunter22!", stored)
    assert not verify_password("hunter23!", stored)
    assert not verify_password("hunter22!", "bcrypt:1:2:3")
    assert not verify_password("hunter22!", "pbkdf2:x:y")


def test_data_key_wrapping_round_trip_and_wrong_kek() -> None:
    data_key = generate_data_key()
    kek = derive_kek(hash_password("pw-one-123"))
    wrapped = wrap_key(data_key, kek)
    assert unwrap_key(wrapped, kek) == data_key
    with pytest.raises(DecryptionError):
        unwrap_key(wrapped, derive_kek(hash_password("pw-two-456")))


def test_session_token_wrapping_binds_to_token() -> None:
    data_key = generate_data_key()
    token = generate_secure_token()
    wrapped = wrap_key_with_token(data_key, token)
    assert unwrap_key_with_token(wrapped, token) == data_key
    with pytest.raises(DecryptionError):
        unwrap_key_with_token(wrapped, generate_secure_token())


def test_secure_tokens_are_url_safe() -> None:
    token = generate_secure_token()
    assert len(token) == 43
    assert "=" not in token and "+" not in token and "/" not in token
    assert constant_time_equal(token, token)
    assert not constant_time_equal(token, token[:-1])
