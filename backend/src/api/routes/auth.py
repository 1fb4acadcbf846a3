"""
Account credential routes.

Handles:
- POST   /api/auth/register                   create a password account and sign in
- POST   /api/auth/login                      sign in with email and password
- POST   /api/auth/logout                     end the current browser session
- GET    /api/auth/tokens                     list personal API tokens
- POST   /api/auth/tokens                     create one (raw token shown once)
- DELETE /api/auth/tokens/{token_id}          delete one
- GET    /api/auth/oauth                      list linked sign-in providers
- GET    /api/auth/oauth/{provider}/authorize redirect to the provider
- GET    /api/auth/oauth/{provider}/callback  finish sign-in or link the provider
- DELETE /api/auth/oauth/{provider}           unlink a provider

SECURITY: raw tokens and provider tokens are never returned after creation.
"""

import hmac
import logging
import secrets
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.api.dependencies.auth import AuthContext, get_auth_context
from src.auth.accounts import AccountService
from src.auth.api_tokens import APITokenManager
from src.auth.errors import (
    AlreadyLinkedError,
    EmailTakenError,
    InvalidCredentialsError,
    InvalidPermissionError,
    LastAuthMethodError,
    LinkedToOtherUserError,
    OAuthAccountNotFoundError,
)
from src.auth.oauth_links import OAuthLinkManager
from src.auth.oauth_providers import OAuthProvider, OAuthProviderError, get_provider
from src.auth.passwords import WeakPasswordError
from src.auth.sessions import SessionManager
from src.config.settings import (
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_MAX_AGE_SECONDS,
    OAUTH_SUCCESS_REDIRECT,
    SESSION_COOKIE_NAME,
    session_cookie_secure,
    session_ttl,
)
from src.database.session import get_db_session
from src.models.user import User
from src.platform.audit import extract_client_info
from src.platform.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# Request/Response Models

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=256)
    name: Optional[str] = Field(None, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=256)


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    subscription_tier: str


class CreateTokenRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    permissions: Optional[List[str]] = None
    preset: Optional[str] = Field(None, description="read_only, standard or full")
    expires_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    id: str
    name: str
    token_prefix: str
    permissions: List[str]
    last_used_at: Optional[datetime]
    expires_at: Optional[datetime]
    created_at: datetime


class CreatedTokenResponse(TokenResponse):
    token: str = Field(..., description="Raw token. Shown only once.")


class OAuthAccountResponse(BaseModel):
    provider: str
    linked_at: Optional[datetime]


def _token_response(record, cls=TokenResponse, **extra):
    return cls(
        id=record.id,
        name=record.name,
        token_prefix=record.token_prefix,
        permissions=list(record.permissions or []),
        last_used_at=record.last_used_at,
        expires_at=record.expires_at,
        created_at=record.created_at,
        **extra,
    )


def _require_interactive(auth: AuthContext) -> None:
    """Credential management is only available to browser sessions and JWT callers."""
    if auth.api_token is not None:
        raise PermissionDeniedError("API tokens cannot manage credentials")


def _user_response(user: User) -> UserResponse:
    tier = user.subscription_tier
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        subscription_tier=getattr(tier, "value", tier),
    )


def _start_session(request: Request, response: Response, db: Session, user: User) -> None:
    ip_address, user_agent = extract_client_info(request)
    issued = SessionManager(db).create_session(
        user.id, user_agent=user_agent, ip_address=ip_address,
    )
    _set_session_cookie(response, issued.token)


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=int(session_ttl().total_seconds()),
        path="/",
        httponly=True,
        secure=session_cookie_secure(),
        samesite="lax",
    )


def get_oauth_provider(provider: str) -> OAuthProvider:
    """Configured client for the provider named in the path."""
    try:
        client = get_provider(provider)
    except ValueError:
        logger.error("OAuth provider is not configured", extra={"provider": provider})
        raise ServiceUnavailableError(f"{provider} sign-in is not configured")
    if client is None:
        raise NotFoundError("OAuth provider", provider)
    return client


# Routes

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db_session),
):
    if "@" not in body.email:
        raise ValidationError("Invalid email address", code="INVALID_EMAIL")
    try:
        user = AccountService(db).register(body.email, body.password, body.name)
    except WeakPasswordError as e:
        raise ValidationError(str(e), code=e.code.upper())
    except EmailTakenError as e:
        raise ConflictError(str(e), code=e.code.upper())

    _start_session(request, response, db, user)
    return _user_response(user)


@router.post("/login", response_model=UserResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db_session),
):
    try:
        user = AccountService(db).authenticate(body.email, body.password)
    except InvalidCredentialsError as e:
        raise AuthenticationError(str(e), code=e.code.upper())

    _start_session(request, response, db, user)
    logger.info("User signed in", extra={"user_id": user.id, "method": "password"})
    return _user_response(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
):
    if auth.session_token:
        SessionManager(db).revoke(auth.session_token)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/tokens", response_model=List[TokenResponse])
async def list_tokens(
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
):
    return [_token_response(t) for t in APITokenManager(db).list_for_user(auth.user.id)]


@router.post("/tokens", response_model=CreatedTokenResponse, status_code=status.HTTP_201_CREATED)
async def create_token(
    body: CreateTokenRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
):
    _require_interactive(auth)
    try:
        issued = APITokenManager(db).create(
            auth.user.id,
            body.name,
            permissions=body.permissions,
            preset=body.preset,
            expires_at=body.expires_at,
        )
    except InvalidPermissionError as e:
        raise ValidationError(str(e), details={"permission": e.permission}, code=e.code.upper())
    return _token_response(issued.record, cls=CreatedTokenResponse, token=issued.token)


@router.delete("/tokens/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_token(
    token_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
):
    _require_interactive(auth)
    if not APITokenManager(db).delete(auth.user.id, token_id):
        raise NotFoundError("API token", token_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/oauth", response_model=List[OAuthAccountResponse])
async def list_oauth_accounts(
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
):
    return [
        OAuthAccountResponse(provider=a.provider, linked_at=a.created_at)
        for a in OAuthLinkManager(db).list_for_user(auth.user.id)
    ]


@router.get("/oauth/{provider}/authorize")
async def oauth_authorize(client: OAuthProvider = Depends(get_oauth_provider)):
    state = secrets.token_urlsafe(32)
    response = RedirectResponse(client.authorization_url(state), status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        state,
        max_age=OAUTH_STATE_MAX_AGE_SECONDS,
        path="/api/auth/oauth",
        httponly=True,
        secure=session_cookie_secure(),
        samesite="lax",
    )
    return response


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    client: OAuthProvider = Depends(get_oauth_provider),
    db: Session = Depends(get_db_session),
):
    """
    Finish the authorization code flow.

    With a valid browser session the provider account is linked to the
    signed-in user. Otherwise the provider identity signs in (or creates)
    an account and a new session is issued.
    """
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
    if not state or not expected_state or not hmac.compare_digest(state, expected_state):
        logger.warning("OAuth state mismatch", extra={"provider": client.name})
        raise ValidationError("Invalid OAuth state", code="INVALID_OAUTH_STATE")
    if not code:
        raise ValidationError("Missing authorization code", code="INVALID_OAUTH_CODE")

    try:
        tokens = await client.exchange_code(code)
        info = await client.fetch_user(tokens)
    except OAuthProviderError as e:
        raise ValidationError(str(e), details={"provider": client.name}, code=e.code.upper())

    response = RedirectResponse(OAUTH_SUCCESS_REDIRECT, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/api/auth/oauth")

    current_user = SessionManager(db).validate(request.cookies.get(SESSION_COOKIE_NAME))
    if current_user is not None:
        try:
            OAuthLinkManager(db).link(
                current_user.id,
                info.provider,
                info.provider_user_id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.expires_at,
            )
        except (AlreadyLinkedError, LinkedToOtherUserError) as e:
            raise ConflictError(str(e), details={"provider": info.provider}, code=e.code.upper())
        return response

    user, created = AccountService(db).sign_in_with_oauth(info, tokens)
    _start_session(request, response, db, user)
    logger.info(
        "User signed in",
        extra={"user_id": user.id, "method": info.provider, "created": created},
    )
    return response


@router.delete("/oauth/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_oauth_account(
    provider: str,
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session),
):
    _require_interactive(auth)
    try:
        OAuthLinkManager(db).unlink(auth.user.id, provider)
    except OAuthAccountNotFoundError:
        raise NotFoundError("Linked account", provider)
    except LastAuthMethodError as e:
        raise ValidationError(
            "Cannot disconnect your only sign-in method",
            details={"provider": provider},
            code=e.code.upper(),
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
