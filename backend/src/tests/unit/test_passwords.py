"""bcrypt password hashing and the password length rules."""

import pytest

from src.auth.passwords import (
    MAX_PASSWORD_BYTES,
    WeakPasswordError,
    hash_password,
    validate_password,
    verify_password,
)


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")


def test_hash_and_verify():
    hashed = hash_password("correct horse")

    assert hashed.startswith("$2b$04$")
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)


def test_hashes_are_salted():
    assert hash_password("correct horse") != hash_password("correct horse")


@pytest.mark.parametrize("password", ["", "short", "x" * (MAX_PASSWORD_BYTES + 1), "é" * 40])
def test_rejects_weak_or_oversized(password):
    with pytest.raises(WeakPasswordError):
        validate_password(password)


def test_accepts_limits():
    validate_password("x" * 8)
    validate_password("x" * MAX_PASSWORD_BYTES)


def test_malformed_hash_never_matches():
    assert not verify_password("correct horse", "$argon2id$placeholder")


def test_oversized_password_never_matches():
    hashed = hash_password("x" * MAX_PASSWORD_BYTES)
    assert not verify_password("x" * (MAX_PASSWORD_BYTES + 1), hashed)
