"""
Secret encryption at rest.

Fernet symmetric encryption keyed from the ENCRYPTION_KEY environment
variable. The variable may hold any string; the Fernet key is derived from
its SHA-256 digest so operators do not need to generate a Fernet key.
"""

import base64
import hashlib
import logging
import os

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a secret cannot be encrypted or decrypted."""


def validate_encryption_configured() -> bool:
    return bool(os.getenv("ENCRYPTION_KEY"))


def _fernet() -> Fernet:
    key = os.getenv("ENCRYPTION_KEY")
    if not key:
        raise EncryptionError("ENCRYPTION_KEY environment variable is required")
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a string; the result is ASCII and safe to store in a text column."""
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_secret(ciphertext: str) -> str:
    try:
        return _fernet().decrypt(ciphertext.encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError) as e:
        raise EncryptionError("Ciphertext is invalid or was encrypted with another key") from e
