"""API dependencies: shared clients, service credentials and user JWTs.

Service credentials are accepted as either
  - Authorization: Bearer <serviceIdentifier>:<apiKey>
  - Authorization: Basic base64(<serviceIdentifier>:<apiKey>)

User-facing endpoints take an AF Auth JWT as ``Authorization: Bearer <JWT>``
through :func:`get_current_user` (whitelist enforced) or
:func:`get_current_user_without_whitelist`.
"""
import base64
import binascii
from typing import NamedTuple, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.database import get_db
from afauth.errors import APIError, ErrorCode
from afauth.middleware.monitoring import record_auth_failure
from afauth.models.user import User
from afauth.services.ephemeral_store import EphemeralStore, get_ephemeral_store
from afauth.services.github_oauth import GitHubOAuthClient, get_github_client
from afauth.services.jwt_service import verify_jwt
from afauth.services.oauth_state import OAuthStateManager
from afauth.services.token_retrieval import TokenRetrievalService
from afauth.services.token_revocation import is_token_revoked
from afauth.utils.logger import logger

_bearer_scheme = HTTPBearer(auto_error=False)


class ServiceCredentials(NamedTuple):
    service_identifier: str
    api_key: str


def _split_credentials(raw: str) -> Optional[ServiceCredentials]:
    parts = raw.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return ServiceCredentials(parts[0], parts[1])


def parse_service_credentials(auth_header: Optional[str]) -> Optional[ServiceCredentials]:
    """Parse service credentials from an Authorization header value"""
    if not auth_header:
        return None

    if auth_header.startswith("Bearer "):
        return _split_credentials(auth_header[7:])

    if auth_header.startswith("Basic "):
        try:
            decoded = base64.b64decode(auth_header[6:], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
        return _split_credentials(decoded)

    return None


def get_service_credentials(request: Request) -> Optional[ServiceCredentials]:
    return parse_service_credentials(request.headers.get("authorization"))


def get_store() -> EphemeralStore:
    return get_ephemeral_store()


def get_oauth_client() -> GitHubOAuthClient:
    return get_github_client()


def get_state_manager(store: EphemeralStore = Depends(get_store)) -> OAuthStateManager:
    return OAuthStateManager(store)


def get_token_retrieval_service(
    github_client: GitHubOAuthClient = Depends(get_oauth_client),
) -> TokenRetrievalService:
    return TokenRetrievalService(github_client)


def get_client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ---------------------------------------------------------------------------
# User JWT authentication
# ---------------------------------------------------------------------------

class AuthenticatedUser(NamedTuple):
    """Identity carried by a verified, unrevoked JWT"""
    sub: str
    github_id: Optional[str]
    jti: Optional[str]


async def _authenticate_jwt(
    credentials: Optional[HTTPAuthorizationCredentials],
    db: AsyncSession,
) -> AuthenticatedUser:
    """Verify signature and expiry, then consult the revocation ledger. Raises 401."""
    if credentials is None:
        record_auth_failure("jwt", "missing_auth_header")
        raise APIError(401, ErrorCode.UNAUTHORIZED, "Missing or invalid authorization header")

    result = verify_jwt(credentials.credentials)
    if not result.valid:
        if result.expired:
            record_auth_failure("jwt", "token_expired")
            raise APIError(401, ErrorCode.EXPIRED_TOKEN, "Token has expired")
        record_auth_failure("jwt", "invalid_token")
        raise APIError(401, ErrorCode.INVALID_TOKEN, "Invalid token")

    claims = result.claims
    if not claims.get("sub"):
        record_auth_failure("jwt", "invalid_claims")
        raise APIError(401, ErrorCode.INVALID_TOKEN, "Invalid token claims")

    jti = claims.get("jti")
    if jti and await is_token_revoked(db, jti):
        logger.info("Revoked token rejected", extra={"jti": jti, "user_id": claims["sub"]})
        record_auth_failure("jwt", "token_revoked")
        raise APIError(401, ErrorCode.TOKEN_REVOKED, "This token has been revoked")

    return AuthenticatedUser(sub=claims["sub"], github_id=claims.get("githubId"), jti=jti)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """Require a valid JWT whose user still exists and is still whitelisted.

    The whitelist is read from the database, not the token claim, so a
    revocation takes effect before the token expires.
    """
    current = await _authenticate_jwt(credentials, db)

    user = await db.get(User, current.sub)
    if user is None:
        logger.warning("Token rejected: user not found", extra={"user_id": current.sub})
        record_auth_failure("jwt", "user_not_found")
        raise APIError(404, ErrorCode.USER_NOT_FOUND, "User not found")

    if not user.is_whitelisted:
        logger.info("Token rejected: user not whitelisted", extra={"user_id": current.sub})
        record_auth_failure("whitelist", "whitelist_revoked")
        raise APIError(403, ErrorCode.WHITELIST_REVOKED, "Access has been revoked")

    return current


async def get_current_user_without_whitelist(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """Require a valid, unrevoked JWT; the whitelist is not consulted"""
    return await _authenticate_jwt(credentials, db)
