"""
OAuth token encryption.

Wraps the platform secrets module for linked-account tokens.

SECURITY REQUIREMENTS:
- No plaintext tokens outside process memory
- Plaintext is never logged

Usage:
    from src.credentials.encryption import encrypt_token, decrypt_token

    encrypted = encrypt_token(access_token)
    plaintext = decrypt_token(encrypted)
"""

import logging

from src.platform.secrets import (
    EncryptionError,
    decrypt_secret,
    encrypt_secret,
    validate_encryption_configured,
)

logger = logging.getLogger(__name__)


class CredentialEncryptionError(Exception):
    """Raised when token encryption/decryption fails."""

    def __init__(self, message: str, operation: str = "unknown"):
        self.operation = operation
        super().__init__(message)


def _require_key(operation: str) -> None:
    if not validate_encryption_configured():
        logger.error("Encryption not configured", extra={"operation": operation})
        raise CredentialEncryptionError(
            "Encryption key not configured. Set ENCRYPTION_KEY environment variable.",
            operation=operation,
        )


def encrypt_token(plaintext: str) -> str:
    """
    Encrypt an OAuth token for storage.

    Raises:
        CredentialEncryptionError: If encryption fails
        ValueError: If plaintext is empty
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty token")
    _require_key("encrypt")

    try:
        return encrypt_secret(plaintext)
    except EncryptionError as e:
        logger.error(
            "Token encryption failed",
            extra={"operation": "encrypt_token", "error_type": type(e).__name__},
        )
        raise CredentialEncryptionError("Failed to encrypt token", operation="encrypt") from e


def decrypt_token(ciphertext: str) -> str:
    """
    Decrypt a stored OAuth token. The result must never be logged.

    Raises:
        CredentialEncryptionError: If decryption fails
        ValueError: If ciphertext is empty
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty ciphertext")
    _require_key("decrypt")

    try:
        return decrypt_secret(ciphertext)
    except EncryptionError as e:
        logger.error(
            "Token decryption failed",
            extra={"operation": "decrypt_token", "error_type": type(e).__name__},
        )
        raise CredentialEncryptionError(
            "Failed to decrypt token. Token may be corrupted or encryption key changed.",
            operation="decrypt",
        ) from e


def validate_encryption_ready() -> bool:
    """
    Fail fast at startup when ENCRYPTION_KEY is missing.

    Raises:
        CredentialEncryptionError: If encryption is not configured
    """
    _require_key("validate")
    logger.info("Credential encryption validated successfully")
    return True
