"""
OAuth sign-in providers (authorization code flow).

Each provider builds its authorize URL, exchanges the callback code for
tokens and fetches the provider's view of the user. Only accounts with a
verified email are accepted, since email is how an existing account is
matched on first sign-in.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from src.config.settings import OAUTH_REDIRECT_BASE_URL, get_oauth_client_credentials

logger = logging.getLogger(__name__)


class OAuthProviderError(Exception):
    """The provider rejected the exchange or returned an unusable profile."""

    code = "oauth_failed"


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class OAuthUserInfo:
    provider: str
    provider_user_id: str
    email: str
    name: Optional[str] = None


class OAuthProvider:
    """Base authorization-code client. Subclasses set the endpoints and profile parsing."""

    name = ""
    authorize_endpoint = ""
    token_endpoint = ""
    scopes = ""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if client_id is None or client_secret is None:
            client_id, client_secret = get_oauth_client_credentials(self.name)
        self.client_id = client_id
        self.client_secret = client_secret
        self._transport = transport

    @property
    def redirect_uri(self) -> str:
        return f"{OAUTH_REDIRECT_BASE_URL.rstrip('/')}/api/auth/oauth/{self.name}/callback"

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scopes,
            "state": state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=15.0,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def exchange_code(self, code: str) -> OAuthTokens:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        payload = await self._request("POST", self.token_endpoint, data=data)
        access_token = payload.get("access_token")
        if not access_token:
            logger.warning(
                "OAuth token exchange returned no access token",
                extra={"provider": self.name, "error": payload.get("error")},
            )
            raise OAuthProviderError(f"{self.name} did not return an access token")

        expires_at = None
        if payload.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(payload["expires_in"]))
        return OAuthTokens(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
        )

    async def fetch_user(self, tokens: OAuthTokens) -> OAuthUserInfo:
        raise NotImplementedError

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("OAuth provider HTTP error", extra={
                "provider": self.name,
                "url": url,
                "status_code": e.response.status_code,
            })
            raise OAuthProviderError(f"{self.name} returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("OAuth provider request error", extra={
                "provider": self.name,
                "url": url,
                "error": str(e),
            })
            raise OAuthProviderError(f"Request to {self.name} failed") from e
        except ValueError as e:
            raise OAuthProviderError(f"Invalid JSON from {self.name}") from e


class GitHubOAuthProvider(OAuthProvider):
    name = "github"
    authorize_endpoint = "https://github.com/login/oauth/authorize"
    token_endpoint = "https://github.com/login/oauth/access_token"
    scopes = "read:user user:email"
    api_base = "https://api.github.com"

    async def fetch_user(self, tokens: OAuthTokens) -> OAuthUserInfo:
        headers = {"Authorization": f"Bearer {tokens.access_token}"}
        profile = await self._request("GET", f"{self.api_base}/user", headers=headers)
        emails = await self._request("GET", f"{self.api_base}/user/emails", headers=headers)

        primary = next(
            (e["email"] for e in emails if e.get("primary") and e.get("verified")),
            None,
        )
        if not primary or profile.get("id") is None:
            raise OAuthProviderError("GitHub account has no verified primary email")
        return OAuthUserInfo(
            provider=self.name,
            provider_user_id=str(profile["id"]),
            email=primary,
            name=profile.get("name") or profile.get("login"),
        )


class GoogleOAuthProvider(OAuthProvider):
    name = "google"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://openidconnect.googleapis.com/v1/userinfo"
    scopes = "openid email profile"

    async def fetch_user(self, tokens: OAuthTokens) -> OAuthUserInfo:
        profile: Dict[str, Any] = await self._request(
            "GET",
            self.userinfo_endpoint,
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        if not profile.get("sub") or not profile.get("email") or not profile.get("email_verified"):
            raise OAuthProviderError("Google account has no verified email")
        return OAuthUserInfo(
            provider=self.name,
            provider_user_id=str(profile["sub"]),
            email=profile["email"],
            name=profile.get("name"),
        )


PROVIDERS = {
    GitHubOAuthProvider.name: GitHubOAuthProvider,
    GoogleOAuthProvider.name: GoogleOAuthProvider,
}


def get_provider(name: str) -> Optional[OAuthProvider]:
    """Instantiate a configured provider, or None for an unknown name."""
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        return None
    return provider_cls()
