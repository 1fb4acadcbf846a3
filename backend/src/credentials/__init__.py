"""
Encryption for third-party credentials (linked OAuth account tokens).

SECURITY:
- Tokens are encrypted at rest using ENCRYPTION_KEY
- Tokens NEVER appear in logs or API responses
"""

from src.credentials.encryption import (
    CredentialEncryptionError,
    decrypt_token,
    encrypt_token,
    validate_encryption_ready,
)

__all__ = [
    "encrypt_token",
    "decrypt_token",
    "validate_encryption_ready",
    "CredentialEncryptionError",
]
