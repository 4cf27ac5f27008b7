"""GitHub token retrieval endpoint for trusted services"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.api.deps import (
    ServiceCredentials,
    get_client_ip,
    get_service_credentials,
    get_token_retrieval_service,
)
from afauth.config import settings
from afauth.database import get_db
from afauth.errors import APIError, ErrorCode
from afauth.middleware.monitoring import record_auth_failure
from afauth.middleware.rate_limit import limiter
from afauth.schemas.github_token import GitHubTokenRequest, GitHubTokenResponse
from afauth.services.service_registry import authenticate_service
from afauth.services.token_retrieval import TokenRetrievalService
from afauth.utils.logger import logger

router = APIRouter(prefix="/api", tags=["github-token"])

# One message for every credential failure so identifiers cannot be probed
INVALID_CREDENTIALS_MESSAGE = "Invalid or missing service credentials"


@router.post("/github-token", response_model=GitHubTokenResponse)
@limiter.limit(settings.RATE_LIMIT_GITHUB_TOKEN)
async def retrieve_github_token(
    request: Request,
    body: GitHubTokenRequest,
    credentials: Optional[ServiceCredentials] = Depends(get_service_credentials),
    retrieval: TokenRetrievalService = Depends(get_token_retrieval_service),
    db: AsyncSession = Depends(get_db),
) -> GitHubTokenResponse:
    """Return a user's GitHub access token to an authenticated service.

    Authenticate with ``Authorization: Bearer <serviceIdentifier>:<apiKey>``
    or HTTP Basic. Identify the user with ``userId`` or ``githubUserId``.
    The token is refreshed first if it is close to expiry.
    """
    if credentials is None:
        logger.warning("GitHub token request missing service credentials")
        record_auth_failure("service", "missing_credentials")
        raise APIError(401, ErrorCode.UNAUTHORIZED, INVALID_CREDENTIALS_MESSAGE)

    auth = await authenticate_service(db, credentials.service_identifier, credentials.api_key)
    if not auth.authenticated:
        record_auth_failure("service", (auth.error or "unknown").lower().replace(" ", "_"))
        raise APIError(401, ErrorCode.UNAUTHORIZED, INVALID_CREDENTIALS_MESSAGE)

    result = await retrieval.retrieve(
        db,
        auth.service,
        user_id=body.user_id,
        github_user_id=body.github_user_id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if not result.success:
        raise APIError(result.status_code, result.error_code, result.message)

    return GitHubTokenResponse(token=result.token, expires_at=result.expires_at, user=result.user)
