"""GitHub OAuth web flow client"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from afauth.config import settings
from afauth.errors import GitHubAPIError, OAuthExchangeError, TokenRefreshError
from afauth.utils.logger import logger

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"

# Transport failures plus the ways a GitHub response body can be malformed
_MALFORMED_OR_FAILED = (httpx.HTTPError, ValueError, TypeError, KeyError, AttributeError)


def _optional_int(value: Any) -> Optional[int]:
    """Seconds field of a token response; raises ValueError/TypeError if not numeric"""
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class GitHubTokenResponse:
    access_token: str
    token_type: str = "bearer"
    scope: str = ""
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token_expires_in: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GitHubTokenResponse":
        return cls(
            access_token=payload["access_token"],
            token_type=payload.get("token_type", "bearer"),
            scope=payload.get("scope", ""),
            refresh_token=payload.get("refresh_token") or None,
            expires_in=_optional_int(payload.get("expires_in")),
            refresh_token_expires_in=_optional_int(payload.get("refresh_token_expires_in")),
        )


@dataclass
class GitHubUser:
    id: int
    login: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None


def calculate_token_expiration(expires_in: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
    """Absolute expiry for an ``expires_in`` value; None/0 means the token never expires"""
    if not expires_in:
        return None
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=int(expires_in))


def is_token_expiring_soon(
    expires_at: Optional[datetime],
    threshold_seconds: int = 3600,
    now: Optional[datetime] = None,
) -> bool:
    """True if ``expires_at`` falls within ``threshold_seconds`` (or has passed).

    A token without an expiry never expires soon.
    """
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return expires_at - now <= timedelta(seconds=threshold_seconds)


class GitHubOAuthClient:
    """Thin async wrapper around GitHub's OAuth and user endpoints.

    An ``httpx.AsyncClient`` may be injected (tests pass one with a mock
    transport); otherwise one is created with the configured timeout.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        callback_url: Optional[str] = None,
        scope: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.GITHUB_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.GITHUB_CLIENT_SECRET
        self.callback_url = callback_url or settings.github_callback_url
        self.scope = scope or settings.GITHUB_OAUTH_SCOPE
        self._http = http_client or httpx.AsyncClient(timeout=settings.GITHUB_HTTP_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        await self._http.aclose()

    def get_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "state": state,
            "scope": self.scope,
        }
        return f"{GITHUB_AUTHORIZE_URL}?{urlencode(params)}"

    async def _post_token_endpoint(self, data: Dict[str, str]) -> Dict[str, Any]:
        response = await self._http.post(
            GITHUB_TOKEN_URL,
            data={"client_id": self.client_id, "client_secret": self.client_secret, **data},
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("Token endpoint returned a non-object body")
        if payload.get("error"):
            raise ValueError(f"{payload['error']}: {payload.get('error_description', '')}")
        if not payload.get("access_token"):
            raise ValueError("No access token in response")
        return payload

    async def exchange_code_for_token(self, code: str) -> GitHubTokenResponse:
        """Exchange an authorization code for an access token.

        Raises:
            OAuthExchangeError: on any failure; the cause is logged only.
        """
        try:
            payload = await self._post_token_endpoint({
                "code": code,
                "redirect_uri": self.callback_url,
            })
            tokens = GitHubTokenResponse.from_payload(payload)
        except _MALFORMED_OR_FAILED as exc:
            logger.error(
                "Failed to exchange code for token",
                extra={"action": "exchange_code", "error": str(exc)},
            )
            raise OAuthExchangeError("Failed to exchange authorization code for access token") from exc

        logger.info("Successfully exchanged code for access token", extra={"action": "exchange_code"})
        return tokens

    async def get_github_user(self, access_token: str) -> GitHubUser:
        try:
            response = await self._http.get(
                f"{GITHUB_API_URL}/user",
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github+json",
                },
            )
            response.raise_for_status()
            data = response.json()
            user = GitHubUser(
                id=int(data["id"]),
                login=data["login"],
                email=data.get("email"),
                name=data.get("name"),
                avatar_url=data.get("avatar_url"),
            )
        except _MALFORMED_OR_FAILED as exc:
            logger.error(
                "Failed to fetch GitHub user",
                extra={"action": "get_github_user", "error": str(exc)},
            )
            raise GitHubAPIError("Failed to fetch GitHub user information") from exc

        logger.info(f"Fetched GitHub user {user.login}", extra={"github_user_id": user.id})
        return user

    async def refresh_access_token(self, refresh_token: str) -> GitHubTokenResponse:
        """Trade a refresh token for a new token pair.

        Raises:
            TokenRefreshError: on any failure, timeouts included.
        """
        try:
            payload = await self._post_token_endpoint({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
            tokens = GitHubTokenResponse.from_payload(payload)
        except _MALFORMED_OR_FAILED as exc:
            logger.error(
                "Failed to refresh GitHub access token",
                extra={"action": "refresh_token", "error": str(exc)},
            )
            raise TokenRefreshError("Failed to refresh access token") from exc

        logger.info("Successfully refreshed GitHub access token", extra={"action": "refresh_token"})
        return tokens


_client: Optional[GitHubOAuthClient] = None


def get_github_client() -> GitHubOAuthClient:
    global _client
    if _client is None:
        _client = GitHubOAuthClient()
    return _client


async def close_github_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
