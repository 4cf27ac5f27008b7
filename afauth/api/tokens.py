"""JWT issuance, refresh, revocation, and public key endpoints"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.api.deps import AuthenticatedUser, get_current_user, get_current_user_without_whitelist
from afauth.config import settings
from afauth.database import get_db
from afauth.errors import APIError, ErrorCode, RefreshError, UserNotFoundError
from afauth.middleware.rate_limit import limiter
from afauth.schemas.token import (
    RevocationDetails,
    RevocationStatusResponse,
    SessionResponse,
    TokenRefreshRequest,
    TokenResponse,
    TokenRevokeRequest,
    TokenRevokeResponse,
)
from afauth.services.jwt_service import (
    calculate_jwt_expiration,
    generate_jwt,
    get_jwks,
    get_public_key_pem,
    refresh_jwt,
)
from afauth.services.token_revocation import get_revocation_status, revoke_token
from afauth.utils.logger import logger

router = APIRouter(tags=["authentication"])


def _token_response(token: str) -> TokenResponse:
    return TokenResponse(
        token=token,
        expires_in=settings.JWT_EXPIRE_SECONDS,
        expires_at=calculate_jwt_expiration(),
    )


# ---------------------------------------------------------------------------
# GET /api/token
# ---------------------------------------------------------------------------

@router.get("/api/token", response_model=TokenResponse)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def issue_token(
    request: Request,
    user_id: str = Query(..., alias="userId", min_length=1, max_length=255),
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Issue a JWT for a user.

    The token's ``isWhitelisted`` claim reflects the user's status at the
    moment of issuance.
    """
    try:
        token = await generate_jwt(db, user_id)
    except UserNotFoundError:
        logger.warning("Token generation failed: user not found", extra={"user_id": user_id})
        raise APIError(404, ErrorCode.USER_NOT_FOUND, "The specified user does not exist.")

    return _token_response(token)


# ---------------------------------------------------------------------------
# POST /api/token
# ---------------------------------------------------------------------------

@router.post("/api/token", response_model=TokenResponse)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def refresh_token(
    request: Request,
    body: TokenRefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Exchange a valid JWT for a new one.

    Refused when the token is expired, malformed, revoked, or the user is
    gone or no longer whitelisted.
    """
    try:
        token = await refresh_jwt(db, body.token)
    except RefreshError as exc:
        logger.info(f"Token refresh refused: {exc.kind.value}")
        raise exc.to_api_error()

    return _token_response(token)


# ---------------------------------------------------------------------------
# POST /api/token/revoke
# ---------------------------------------------------------------------------

@router.post("/api/token/revoke", response_model=TokenRevokeResponse)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def revoke(
    request: Request,
    body: TokenRevokeRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenRevokeResponse:
    """Revoke a JWT by adding its jti to the ledger. Idempotent."""
    result = await revoke_token(db, body.token, revoked_by=body.revoked_by, reason=body.reason)
    if not result.success:
        logger.warning("Token revocation failed", extra={"error": result.error})
        raise APIError(400, ErrorCode.REVOCATION_FAILED, result.error or "Failed to revoke token")

    return TokenRevokeResponse(success=True, jti=result.jti, message="Token revoked successfully")


# ---------------------------------------------------------------------------
# GET /api/token/revocation-status
# ---------------------------------------------------------------------------

@router.get("/api/token/revocation-status", response_model=RevocationStatusResponse, response_model_exclude_none=True)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def revocation_status(
    request: Request,
    jti: str = Query(..., min_length=1, max_length=255),
    db: AsyncSession = Depends(get_db),
) -> RevocationStatusResponse:
    record = await get_revocation_status(db, jti)
    if record is None:
        return RevocationStatusResponse(revoked=False, jti=jti)

    return RevocationStatusResponse(revoked=True, details=RevocationDetails.model_validate(record))


# ---------------------------------------------------------------------------
# Authenticated session endpoints
# ---------------------------------------------------------------------------

def _session_response(current: AuthenticatedUser) -> SessionResponse:
    return SessionResponse(user_id=current.sub, github_id=current.github_id, jti=current.jti)


@router.get("/api/me", response_model=SessionResponse)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def current_session(
    request: Request,
    current: AuthenticatedUser = Depends(get_current_user),
) -> SessionResponse:
    """Identity of a whitelisted user presenting a valid, unrevoked JWT"""
    return _session_response(current)


@router.get("/api/token/introspect", response_model=SessionResponse)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def introspect_token(
    request: Request,
    current: AuthenticatedUser = Depends(get_current_user_without_whitelist),
) -> SessionResponse:
    """Identity behind a valid, unrevoked JWT, whatever the whitelist says"""
    return _session_response(current)


# ---------------------------------------------------------------------------
# Public key distribution
# ---------------------------------------------------------------------------

@router.get("/api/jwks", response_class=PlainTextResponse)
@limiter.limit(settings.RATE_LIMIT_JWT)
async def public_key_pem(request: Request) -> PlainTextResponse:
    """Return the JWT verification public key as PEM"""
    return PlainTextResponse(get_public_key_pem())


@router.get("/.well-known/jwks.json", response_model=Dict[str, Any])
@limiter.limit(settings.RATE_LIMIT_JWT)
async def jwks(request: Request) -> Dict[str, Any]:
    """Return the public key set (JWKS) for verifying AF Auth JWTs.

    Unauthenticated; intended for services that verify tokens locally.
    """
    return get_jwks()
