"""Opaque bearer token generation and hashing."""

import base64
import hashlib
import secrets

TOKEN_BYTES = 32


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_token() -> str:
    """32 random bytes, urlsafe base64 without padding (43 chars)."""
    return _b64(secrets.token_bytes(TOKEN_BYTES))


def hash_token(token: str) -> str:
    """One-way hash stored in place of the raw token."""
    return _b64(hashlib.sha256(token.encode("utf-8")).digest())
