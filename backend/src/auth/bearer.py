"""
HS256 JWT bearer tokens.

Used by first-party clients that authenticate with a short-lived JWT
instead of a personal API token. Only the ``sub`` claim (user id) is
required.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from src.auth.errors import InvalidTokenError
from src.config.settings import get_jwt_secret

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_LIFETIME = timedelta(hours=1)


def issue_access_token(
    user_id: str,
    lifetime: timedelta = DEFAULT_LIFETIME,
    secret: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, secret or get_jwt_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify a JWT and return its claims.

    Raises:
        InvalidTokenError: If the token is expired, badly signed or has no subject
    """
    try:
        claims = jwt.decode(
            token,
            secret or get_jwt_secret(),
            algorithms=[ALGORITHM],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise InvalidTokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected JWT", extra={"error_type": type(e).__name__})
        raise InvalidTokenError(f"Invalid token: {str(e)}")

    if not isinstance(claims.get("sub"), str) or not claims["sub"]:
        raise InvalidTokenError("Invalid token: empty subject")
    return claims
