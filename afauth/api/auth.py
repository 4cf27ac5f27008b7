"""GitHub OAuth login flow"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.api.deps import get_oauth_client, get_state_manager
from afauth.config import settings
from afauth.database import get_db
from afauth.errors import EphemeralStoreError, GitHubAPIError, OAuthExchangeError
from afauth.middleware.monitoring import record_github_oauth_operation
from afauth.middleware.rate_limit import limiter
from afauth.pages import render_error_page, render_token_ready_page, render_unauthorized_page
from afauth.services.github_oauth import GitHubOAuthClient
from afauth.services.jwt_service import generate_jwt
from afauth.services.oauth_state import OAuthStateManager
from afauth.services.users import upsert_user_from_oauth
from afauth.utils.logger import logger

router = APIRouter(prefix="/auth", tags=["oauth"])


def _csp_nonce(request: Request) -> Optional[str]:
    return getattr(request.state, "csp_nonce", None)


def _error_page(request: Request, status_code: int, title: str, message: str) -> HTMLResponse:
    return HTMLResponse(
        render_error_page(
            title=title, message=message, service_name=settings.SERVICE_NAME, nonce=_csp_nonce(request),
        ),
        status_code=status_code,
    )


@router.get("/github")
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def start_github_login(
    request: Request,
    state_manager: OAuthStateManager = Depends(get_state_manager),
    github: GitHubOAuthClient = Depends(get_oauth_client),
):
    """Redirect the browser to GitHub's authorization page"""
    request_id = getattr(request.state, "request_id", None)
    try:
        state = await state_manager.generate_state(request_id=request_id)
    except EphemeralStoreError as exc:
        record_github_oauth_operation("authorize", success=False)
        return _error_page(request, 503, "Service Unavailable", exc.user_message)

    logger.info("Initiating GitHub OAuth flow", extra={"request_id": request_id})
    record_github_oauth_operation("authorize", success=True)
    return RedirectResponse(github.get_authorization_url(state), status_code=302)


@router.get("/github/callback", response_class=HTMLResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def github_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    state_manager: OAuthStateManager = Depends(get_state_manager),
    github: GitHubOAuthClient = Depends(get_oauth_client),
    db: AsyncSession = Depends(get_db),
):
    """Complete the OAuth flow: consume state, exchange the code, upsert the user"""
    if error:
        logger.warning(f"GitHub OAuth error: {error}")
        record_github_oauth_operation("callback", success=False)
        return _error_page(
            request, 400, "Authentication Failed",
            error_description or "GitHub authentication was unsuccessful. Please try again.",
        )

    if not code:
        logger.warning("Missing authorization code in callback")
        return _error_page(request, 400, "Invalid Request", "Missing authorization code. Please try again.")

    if not state:
        logger.warning("Missing state parameter in callback")
        return _error_page(request, 400, "Invalid Request", "Missing state parameter. Please try again.")

    try:
        state_data = await state_manager.validate_state(state)
    except EphemeralStoreError as exc:
        record_github_oauth_operation("callback", success=False)
        return _error_page(request, 503, "Service Unavailable", exc.user_message)

    if state_data is None:
        record_github_oauth_operation("callback", success=False)
        return _error_page(
            request, 400, "Session Expired",
            "Your authentication session has expired or is invalid. Please start again.",
        )

    try:
        tokens = await github.exchange_code_for_token(code)
        record_github_oauth_operation("exchange", success=True)
        github_user = await github.get_github_user(tokens.access_token)
    except (OAuthExchangeError, GitHubAPIError):
        record_github_oauth_operation("callback", success=False)
        return _error_page(
            request, 500, "Authentication Error",
            "An error occurred during authentication. Please try again.",
        )

    user = await upsert_user_from_oauth(db, github_user, tokens)
    record_github_oauth_operation("callback", success=True)

    if not user.is_whitelisted:
        logger.info("User is not whitelisted", extra={"user_id": user.id})
        return HTMLResponse(render_unauthorized_page(
            admin_contact_email=settings.ADMIN_CONTACT_EMAIL,
            admin_contact_name=settings.ADMIN_CONTACT_NAME,
            service_name=settings.SERVICE_NAME,
            nonce=_csp_nonce(request),
        ))

    token = await generate_jwt(db, user.id)
    logger.info("User is whitelisted, session token issued", extra={"user_id": user.id})
    return HTMLResponse(render_token_ready_page(
        user_id=user.id,
        github_login=github_user.login,
        service_name=settings.SERVICE_NAME,
        token=token,
        nonce=_csp_nonce(request),
    ))
