"""
Linked OAuth sign-in accounts.

A user must always keep at least one way to sign in: a password or a
linked provider. Unlinking checks that under a lock on the user row so
two concurrent unlinks cannot both pass.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.auth.errors import (
    AlreadyLinkedError,
    LastAuthMethodError,
    LinkedToOtherUserError,
    OAuthAccountNotFoundError,
)
from src.credentials.encryption import decrypt_token, encrypt_token
from src.models.oauth_account import OAuthAccount
from src.models.user import User
from src.platform.audit import AuditAction, AuditOutcome, log_system_audit_event_sync

logger = logging.getLogger(__name__)


class OAuthLinkManager:
    def __init__(self, db_session: Session):
        self.db = db_session

    def list_for_user(self, user_id: str) -> List[OAuthAccount]:
        stmt = (
            select(OAuthAccount)
            .where(OAuthAccount.user_id == user_id)
            .order_by(OAuthAccount.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def link(
        self,
        user_id: str,
        provider: str,
        provider_user_id: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[datetime] = None,
    ) -> OAuthAccount:
        """
        Link a provider account to the user.

        Raises:
            AlreadyLinkedError: The user already has this provider linked
            LinkedToOtherUserError: The provider account belongs to another user
        """
        existing = self.find_account(provider, provider_user_id)
        if existing is not None:
            if existing.user_id == user_id:
                raise AlreadyLinkedError(user_id, provider)
            raise LinkedToOtherUserError(provider)

        if self._find(user_id, provider) is not None:
            raise AlreadyLinkedError(user_id, provider)

        account = OAuthAccount(
            user_id=user_id,
            provider=provider,
            provider_user_id=provider_user_id,
            access_token_encrypted=encrypt_token(access_token) if access_token else None,
            refresh_token_encrypted=encrypt_token(refresh_token) if refresh_token else None,
            token_expires_at=token_expires_at,
        )
        self.db.add(account)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise LinkedToOtherUserError(provider)

        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_OAUTH_LINKED,
            user_id=user_id,
            resource_type="oauth_account",
            resource_id=account.id,
            metadata={"provider": provider},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("OAuth account linked", extra={"user_id": user_id, "provider": provider})
        return account

    def unlink(self, user_id: str, provider: str) -> None:
        """
        Remove a linked provider.

        Raises:
            OAuthAccountNotFoundError: Nothing is linked for this provider
            LastAuthMethodError: The user has no password and no other provider
        """
        user = self.db.execute(
            select(User).where(User.id == user_id).with_for_update()
        ).scalars().first()
        account = self._find(user_id, provider)
        if user is None or account is None:
            self.db.rollback()
            raise OAuthAccountNotFoundError(provider)

        other_links = self.db.execute(
            select(func.count())
            .select_from(OAuthAccount)
            .where(OAuthAccount.user_id == user_id, OAuthAccount.provider != provider)
        ).scalar() or 0

        if not user.has_password and other_links == 0:
            self.db.rollback()
            log_system_audit_event_sync(
                self.db,
                action=AuditAction.AUTH_OAUTH_UNLINK_REFUSED,
                user_id=user_id,
                resource_type="oauth_account",
                resource_id=account.id,
                metadata={"provider": provider},
                source="api",
                outcome=AuditOutcome.DENIED,
                error_code=LastAuthMethodError.code,
            )
            raise LastAuthMethodError(user_id, provider)

        self.db.delete(account)
        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_OAUTH_UNLINKED,
            user_id=user_id,
            resource_type="oauth_account",
            resource_id=account.id,
            metadata={"provider": provider},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("OAuth account unlinked", extra={"user_id": user_id, "provider": provider})

    def find_account(self, provider: str, provider_user_id: str) -> Optional[OAuthAccount]:
        return self.db.execute(
            select(OAuthAccount).where(
                OAuthAccount.provider == provider,
                OAuthAccount.provider_user_id == provider_user_id,
            )
        ).scalars().first()

    def update_tokens(
        self,
        account: OAuthAccount,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[datetime] = None,
    ) -> None:
        """Store fresh provider tokens after a sign-in. A missing refresh token keeps the old one."""
        if access_token:
            account.access_token_encrypted = encrypt_token(access_token)
        if refresh_token:
            account.refresh_token_encrypted = encrypt_token(refresh_token)
        account.token_expires_at = token_expires_at
        self.db.commit()

    def get_access_token(self, user_id: str, provider: str) -> Optional[str]:
        """Decrypted provider access token, in memory only. Never log the result."""
        account = self._find(user_id, provider)
        if account is None or not account.access_token_encrypted:
            return None
        return decrypt_token(account.access_token_encrypted)

    def _find(self, user_id: str, provider: str) -> Optional[OAuthAccount]:
        return self.db.execute(
            select(OAuthAccount).where(
                OAuthAccount.user_id == user_id,
                OAuthAccount.provider == provider,
            )
        ).scalars().first()
