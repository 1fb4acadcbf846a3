"""
Personal API tokens.

Tokens are ``fp_`` + 43 urlsafe characters. The raw token is shown once at
creation; only its hash and the first ten characters are stored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.auth.errors import InvalidPermissionError
from src.auth.tokens import generate_token, hash_token
from src.models.api_token import APIToken
from src.models.user import User
from src.platform.audit import AuditAction, log_system_audit_event_sync

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "fp_"
DISPLAY_PREFIX_LENGTH = 10

PERM_FILES_READ = "files:read"
PERM_FILES_WRITE = "files:write"
PERM_FILES_DELETE = "files:delete"
PERM_TRANSFORM = "transform"
PERM_SHARES_READ = "shares:read"
PERM_SHARES_WRITE = "shares:write"
PERM_WEBHOOKS_READ = "webhooks:read"
PERM_WEBHOOKS_WRITE = "webhooks:write"

ALL_PERMISSIONS = (
    PERM_FILES_READ,
    PERM_FILES_WRITE,
    PERM_FILES_DELETE,
    PERM_TRANSFORM,
    PERM_SHARES_READ,
    PERM_SHARES_WRITE,
    PERM_WEBHOOKS_READ,
    PERM_WEBHOOKS_WRITE,
)

PERMISSION_PRESETS = {
    "read_only": (PERM_FILES_READ, PERM_SHARES_READ),
    "standard": (
        PERM_FILES_READ,
        PERM_FILES_WRITE,
        PERM_TRANSFORM,
        PERM_SHARES_READ,
        PERM_SHARES_WRITE,
    ),
    "full": ALL_PERMISSIONS,
}


def is_api_token(token: str) -> bool:
    return token.startswith(TOKEN_PREFIX)


def resolve_permissions(
    permissions: Optional[Iterable[str]] = None,
    preset: Optional[str] = None,
) -> List[str]:
    """
    Expand a preset and/or explicit permission list.

    No permissions and no preset grants everything.

    Raises:
        InvalidPermissionError: On an unknown permission or preset name
    """
    resolved = []
    if preset is not None:
        if preset not in PERMISSION_PRESETS:
            raise InvalidPermissionError(preset)
        resolved.extend(PERMISSION_PRESETS[preset])
    for permission in permissions or ():
        if permission not in ALL_PERMISSIONS:
            raise InvalidPermissionError(permission)
        if permission not in resolved:
            resolved.append(permission)
    return resolved or list(ALL_PERMISSIONS)


def has_permission(token: APIToken, permission: str) -> bool:
    return permission in (token.permissions or [])


@dataclass
class IssuedAPIToken:
    """A freshly created token. ``token`` is shown to the user once and never stored."""
    token: str
    record: APIToken


class APITokenManager:
    def __init__(
        self,
        db_session: Session,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(
        self,
        user_id: str,
        name: str,
        permissions: Optional[Iterable[str]] = None,
        preset: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> IssuedAPIToken:
        resolved = resolve_permissions(permissions, preset)
        token = TOKEN_PREFIX + generate_token()
        record = APIToken(
            user_id=user_id,
            name=name,
            token_hash=hash_token(token),
            token_prefix=token[:DISPLAY_PREFIX_LENGTH],
            permissions=resolved,
            expires_at=expires_at,
        )
        self.db.add(record)
        self.db.flush()
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_API_TOKEN_CREATED,
            user_id=user_id,
            resource_type="api_token",
            resource_id=record.id,
            metadata={"name": name, "permissions": resolved},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info(
            "API token created",
            extra={"user_id": user_id, "token_id": record.id, "token_prefix": record.token_prefix},
        )
        return IssuedAPIToken(token=token, record=record)

    def validate(self, token: Optional[str]) -> Optional[Tuple[User, APIToken]]:
        """
        Resolve a raw API token. Unknown and expired tokens both return None.

        Updates last_used_at on success.
        """
        if not token or not is_api_token(token):
            return None
        now = self._clock()
        row = self.db.execute(
            select(APIToken, User)
            .join(User, User.id == APIToken.user_id)
            .where(APIToken.token_hash == hash_token(token))
        ).first()
        if row is None:
            return None
        record, user = row
        if record.expires_at is not None and record.expires_at <= now:
            return None

        record.last_used_at = now
        self.db.commit()
        return user, record

    def list_for_user(self, user_id: str) -> List[APIToken]:
        stmt = (
            select(APIToken)
            .where(APIToken.user_id == user_id)
            .order_by(APIToken.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def delete(self, user_id: str, token_id: str) -> bool:
        """Delete one of the user's tokens. Tokens owned by others are treated as absent."""
        record = self.db.execute(
            select(APIToken).where(APIToken.id == token_id, APIToken.user_id == user_id)
        ).scalars().first()
        if record is None:
            return False

        self.db.delete(record)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_API_TOKEN_DELETED,
            user_id=user_id,
            resource_type="api_token",
            resource_id=token_id,
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("API token deleted", extra={"user_id": user_id, "token_id": token_id})
        return True
