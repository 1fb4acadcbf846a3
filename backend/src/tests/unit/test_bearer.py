"""HS256 access tokens."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from src.auth.bearer import decode_access_token, issue_access_token
from src.auth.errors import InvalidTokenError

SECRET = "jwt-test-secret-0123456789abcdef0123"


def test_round_trip_claims():
    now = datetime.now(timezone.utc)
    token = issue_access_token("user-1", secret=SECRET, now=now)
    claims = decode_access_token(token, secret=SECRET)
    assert claims["sub"] == "user-1"
    assert claims["exp"] - claims["iat"] == 3600


def test_expired_token():
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = issue_access_token("user-1", secret=SECRET, now=issued)
    with pytest.raises(InvalidTokenError, match="expired"):
        decode_access_token(token, secret=SECRET)


def test_wrong_secret():
    token = issue_access_token("user-1", secret="another-secret-0123456789abcdef012345")
    with pytest.raises(InvalidTokenError):
        decode_access_token(token, secret=SECRET)


def test_missing_subject():
    token = jwt.encode({"exp": 9_999_999_999}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        decode_access_token(token, secret=SECRET)


def test_other_algorithm_rejected():
    token = jwt.encode({"sub": "user-1"}, SECRET, algorithm="HS512")
    with pytest.raises(InvalidTokenError):
        decode_access_token(token, secret=SECRET)


def test_secret_from_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", SECRET)
    token = issue_access_token("user-2")
    assert decode_access_token(token)["sub"] == "user-2"


def test_garbage():
    with pytest.raises(InvalidTokenError):
        decode_access_token("not.a.jwt", secret=SECRET)
