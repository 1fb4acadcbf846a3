"""
Account sign-up and sign-in.

Password accounts are created by register() and checked by authenticate().
OAuth sign-in finds the user through an existing link, then by verified
email (linking the provider to that account), and otherwise creates an
OAuth-only user with no password.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.auth.errors import EmailTakenError, InvalidCredentialsError
from src.auth.oauth_links import OAuthLinkManager
from src.auth.oauth_providers import OAuthTokens, OAuthUserInfo
from src.auth.passwords import hash_password, validate_password, verify_password
from src.entitlements.policy import EntitlementEngine
from src.models.user import SubscriptionStatus, SubscriptionTier, User
from src.platform.audit import AuditAction, AuditOutcome, log_system_audit_event_sync

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    def __init__(self, db_session: Session, engine: Optional[EntitlementEngine] = None):
        self.db = db_session
        self.engine = engine or EntitlementEngine()

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(func.lower(User.email) == normalize_email(email))
        ).scalars().first()

    def register(self, email: str, password: str, name: Optional[str] = None) -> User:
        """
        Create a free-tier password account.

        Raises:
            WeakPasswordError: The password is too short or too long
            EmailTakenError: The email already belongs to an account
        """
        validate_password(password)
        email = normalize_email(email)
        if self.find_by_email(email) is not None:
            raise EmailTakenError()

        user = self._new_user(email, name, password_hash=hash_password(password))
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise EmailTakenError()

        log_system_audit_event_sync(
            self.db,
            action=AuditAction.AUTH_USER_REGISTERED,
            user_id=user.id,
            resource_type="user",
            resource_id=user.id,
            metadata={"method": "password"},
            source="api",
            commit=False,
        )
        self.db.commit()
        logger.info("User registered", extra={"user_id": user.id, "method": "password"})
        return user

    def authenticate(self, email: str, password: str) -> User:
        """
        Check a password sign-in.

        Raises:
            InvalidCredentialsError: Unknown email, OAuth-only account or wrong password
        """
        user = self.find_by_email(email)
        if user is None or not user.has_password or not verify_password(password, user.password_hash):
            log_system_audit_event_sync(
                self.db,
                action=AuditAction.AUTH_LOGIN_FAILED,
                user_id=user.id if user is not None else None,
                resource_type="user",
                source="api",
                outcome=AuditOutcome.FAILURE,
                error_code=InvalidCredentialsError.code,
            )
            raise InvalidCredentialsError()
        return user

    def sign_in_with_oauth(self, info: OAuthUserInfo, tokens: OAuthTokens) -> Tuple[User, bool]:
        """
        Resolve the user for a completed OAuth sign-in.

        Returns:
            (user, created) where created is True for a brand-new account
        """
        links = OAuthLinkManager(self.db)
        account = links.find_account(info.provider, info.provider_user_id)
        if account is not None:
            links.update_tokens(
                account, tokens.access_token, tokens.refresh_token, tokens.expires_at,
            )
            return self.db.get(User, account.user_id), False

        user = self.find_by_email(info.email)
        created = user is None
        if created:
            user = self._new_user(normalize_email(info.email), info.name, password_hash=None)
            self.db.flush()
            log_system_audit_event_sync(
                self.db,
                action=AuditAction.AUTH_USER_REGISTERED,
                user_id=user.id,
                resource_type="user",
                resource_id=user.id,
                metadata={"method": info.provider},
                source="api",
                commit=False,
            )
            self.db.commit()
            logger.info("User registered", extra={"user_id": user.id, "method": info.provider})

        links.link(
            user.id,
            info.provider,
            info.provider_user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
        )
        return user, created

    def _new_user(self, email: str, name: Optional[str], password_hash: Optional[str]) -> User:
        limits = self.engine.limits_for(SubscriptionTier.FREE)
        user = User(
            email=email,
            name=name,
            password_hash=password_hash,
            subscription_tier=SubscriptionTier.FREE,
            subscription_status=SubscriptionStatus.NONE,
            files_limit=limits.files_limit,
            max_file_size=limits.max_file_size,
            transformations_limit=limits.transformations_limit,
            transformations_count=0,
        )
        self.db.add(user)
        return user
