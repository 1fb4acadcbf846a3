"""
Request authentication dependencies.

Identity is resolved once per request, in this order:
1. Authorization: Bearer fp_...   -> personal API token
2. Authorization: Bearer <jwt>    -> HS256 JWT (sub = user id)
3. session cookie                 -> browser session

Bearer (API) requests that write (anything but GET/HEAD/OPTIONS) also
need a tier with write API access.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from src.auth.api_tokens import APITokenManager, has_permission, is_api_token
from src.auth.bearer import decode_access_token
from src.auth.errors import InvalidTokenError
from src.auth.sessions import SessionManager
from src.config.settings import SESSION_COOKIE_NAME
from src.database.session import get_db_session
from src.entitlements.policy import EntitlementEngine
from src.models.api_token import APIToken
from src.models.user import User
from src.platform.errors import AuthenticationError, PermissionDeniedError

logger = logging.getLogger(__name__)

READ_ONLY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

AUTH_METHOD_SESSION = "session"
AUTH_METHOD_API_TOKEN = "api_token"
AUTH_METHOD_JWT = "jwt"


@dataclass
class AuthContext:
    """The authenticated principal for one request."""
    user: User
    method: str
    api_token: Optional[APIToken] = None
    session_token: Optional[str] = None

    @property
    def is_api(self) -> bool:
        return self.method in (AUTH_METHOD_API_TOKEN, AUTH_METHOD_JWT)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Malformed Authorization header")
    return token.strip()


def _authenticate(request: Request, db: Session) -> AuthContext:
    token = _bearer_token(request)
    if token is not None:
        if is_api_token(token):
            resolved = APITokenManager(db).validate(token)
            if resolved is None:
                raise AuthenticationError("Invalid or expired API token")
            user, api_token = resolved
            return AuthContext(user=user, method=AUTH_METHOD_API_TOKEN, api_token=api_token)

        try:
            claims = decode_access_token(token)
        except InvalidTokenError as e:
            raise AuthenticationError(str(e))
        user = db.get(User, claims["sub"])
        if user is None:
            raise AuthenticationError("Invalid token: unknown subject")
        return AuthContext(user=user, method=AUTH_METHOD_JWT)

    session_token = request.cookies.get(SESSION_COOKIE_NAME)
    user = SessionManager(db).validate(session_token)
    if user is None:
        raise AuthenticationError()
    return AuthContext(user=user, method=AUTH_METHOD_SESSION, session_token=session_token)


def get_auth_context(
    request: Request,
    db: Session = Depends(get_db_session),
) -> AuthContext:
    """Authenticate the request and enforce API write access for bearer callers."""
    auth = _authenticate(request, db)
    request.state.user_id = auth.user.id

    if auth.is_api and request.method.upper() not in READ_ONLY_METHODS:
        engine = EntitlementEngine()
        tier = engine.effective_tier_for(auth.user, datetime.now(timezone.utc))
        if not engine.can_use_api(tier, is_write=True):
            logger.info(
                "API write denied for tier",
                extra={"user_id": auth.user.id, "tier": tier.value, "path": request.url.path},
            )
            raise PermissionDeniedError(
                "API write access requires a Pro subscription",
                code="UPGRADE_REQUIRED",
            )
    return auth


def get_current_user(auth: AuthContext = Depends(get_auth_context)) -> User:
    return auth.user


def require_permission(permission: str) -> Callable:
    """
    Dependency factory requiring an API token permission.

    Session and JWT callers hold every permission.
    """

    def check_permission(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.api_token is not None and not has_permission(auth.api_token, permission):
            logger.info(
                "API token lacks permission",
                extra={
                    "user_id": auth.user.id,
                    "token_id": auth.api_token.id,
                    "permission": permission,
                },
            )
            raise PermissionDeniedError(
                f"API token lacks the '{permission}' permission",
                details={"permission": permission},
                code="INSUFFICIENT_PERMISSION",
            )
        return auth

    return check_permission
