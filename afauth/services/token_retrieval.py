"""Serve users' GitHub tokens to authenticated downstream services"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.config import settings
from afauth.errors import DecryptionError, ErrorCode, TokenRefreshError
from afauth.middleware.monitoring import record_github_oauth_operation, record_github_token_retrieval
from afauth.models.service_registry import ServiceRegistry
from afauth.models.user import User
from afauth.services.github_oauth import (
    GitHubOAuthClient,
    calculate_token_expiration,
    is_token_expiring_soon,
)
from afauth.services.service_registry import log_service_access
from afauth.utils.encryption import decrypt, encrypt
from afauth.utils.logger import logger

RETRIEVE_ACTION = "retrieve_github_token"


@dataclass
class TokenRetrievalResult:
    success: bool
    status_code: int = 200
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, status_code: int, error_code: ErrorCode, message: str) -> "TokenRetrievalResult":
        return cls(success=False, status_code=status_code, error_code=error_code, message=message)


class TokenRetrievalService:
    """Looks up a user's stored GitHub token, refreshing it when close to expiry.

    Every call writes exactly one audit row, whatever the outcome.
    """

    def __init__(self, github_client: GitHubOAuthClient, refresh_threshold_seconds: Optional[int] = None):
        self.github_client = github_client
        self.refresh_threshold_seconds = (
            refresh_threshold_seconds
            if refresh_threshold_seconds is not None
            else settings.GITHUB_TOKEN_REFRESH_THRESHOLD_SECONDS
        )

    async def retrieve(
        self,
        db: AsyncSession,
        service: ServiceRegistry,
        user_id: Optional[str] = None,
        github_user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenRetrievalResult:
        service_id = service.id
        try:
            return await self._retrieve(db, service_id, user_id, github_user_id, ip_address, user_agent)
        except Exception:
            logger.error(
                "Unexpected error during GitHub token retrieval",
                extra={"service_id": service_id},
                exc_info=True,
            )
            await db.rollback()
            await log_service_access(
                service_id,
                user_id or (f"github:{github_user_id}" if github_user_id else "unknown"),
                RETRIEVE_ACTION,
                False,
                error_message="Internal error",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            record_github_token_retrieval(ErrorCode.INTERNAL_ERROR.value)
            return TokenRetrievalResult.failure(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")

    async def _retrieve(
        self,
        db: AsyncSession,
        service_id: str,
        user_id: Optional[str],
        github_user_id: Optional[str],
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> TokenRetrievalResult:
        async def audit(audit_user_id: str, error_message: Optional[str] = None) -> None:
            await log_service_access(
                service_id,
                audit_user_id,
                RETRIEVE_ACTION,
                error_message is None,
                error_message=error_message,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        async def fail(audit_user_id: str, audit_message: str, status_code: int,
                       error_code: ErrorCode, message: str) -> TokenRetrievalResult:
            await audit(audit_user_id, audit_message)
            record_github_token_retrieval(error_code.value)
            return TokenRetrievalResult.failure(status_code, error_code, message)

        if not user_id and not github_user_id:
            logger.warning("GitHub token request missing user identifier", extra={"service_id": service_id})
            return await fail(
                "unknown", "Missing user identifier", 400, ErrorCode.MISSING_USER_IDENTIFIER,
                "Either userId or githubUserId is required in request body",
            )

        user = await self._find_user(db, user_id, github_user_id)
        if user is None:
            logger.warning(
                "GitHub token request for non-existent user",
                extra={"service_id": service_id, "user_id": user_id, "github_user_id": github_user_id},
            )
            return await fail(
                user_id or f"github:{github_user_id}", "User not found", 404, ErrorCode.USER_NOT_FOUND,
                "The specified user does not exist",
            )

        if not user.is_whitelisted:
            logger.warning(
                "GitHub token request for non-whitelisted user",
                extra={"service_id": service_id, "user_id": user.id},
            )
            return await fail(
                user.id, "User not whitelisted", 403, ErrorCode.USER_NOT_WHITELISTED,
                "The specified user is not whitelisted for access",
            )

        if not user.github_access_token:
            logger.warning(
                "GitHub token request for user without token",
                extra={"service_id": service_id, "user_id": user.id},
            )
            return await fail(
                user.id, "No GitHub token available", 404, ErrorCode.TOKEN_NOT_AVAILABLE,
                "GitHub access token not available for this user",
            )

        if user.github_refresh_token and is_token_expiring_soon(
            user.github_token_expires_at, self.refresh_threshold_seconds
        ):
            try:
                user = await self._refresh_locked(db, user.id)
            except (TokenRefreshError, DecryptionError):
                await db.rollback()
                await db.refresh(user)
                expires_at = user.github_token_expires_at
                if expires_at is not None and expires_at <= datetime.now(timezone.utc):
                    logger.error(
                        "GitHub token refresh failed and token has expired",
                        extra={"service_id": service_id, "user_id": user.id},
                    )
                    return await fail(
                        user.id, "Token refresh failed", 503, ErrorCode.TOKEN_REFRESH_FAILED,
                        "GitHub token has expired and could not be refreshed. "
                        "The user may need to re-authenticate.",
                    )
                logger.warning(
                    "GitHub token refresh failed, serving existing unexpired token",
                    extra={"service_id": service_id, "user_id": user.id},
                )

        try:
            token = decrypt(user.github_access_token)
        except DecryptionError:
            logger.error(
                "Failed to decrypt stored GitHub token",
                extra={"service_id": service_id, "user_id": user.id},
            )
            return await fail(
                user.id, "Token decryption failed", 500, ErrorCode.INTERNAL_ERROR,
                "An unexpected error occurred",
            )

        await audit(user.id)
        record_github_token_retrieval("success")
        logger.info(
            "GitHub token retrieved successfully",
            extra={"service_id": service_id, "user_id": user.id},
        )
        return TokenRetrievalResult(
            success=True,
            token=token,
            expires_at=user.github_token_expires_at,
            user={
                "id": user.id,
                "githubUserId": str(user.github_user_id),
                "isWhitelisted": user.is_whitelisted,
            },
        )

    async def _find_user(
        self, db: AsyncSession, user_id: Optional[str], github_user_id: Optional[str]
    ) -> Optional[User]:
        if user_id:
            return await db.get(User, user_id)
        try:
            github_id = int(github_user_id)
        except (TypeError, ValueError):
            return None
        return await db.scalar(select(User).where(User.github_user_id == github_id))

    async def _refresh_locked(self, db: AsyncSession, user_id: str) -> User:
        """Refresh the user's GitHub token while holding the row lock.

        Concurrent callers queue on the lock; whoever comes second sees the
        refreshed expiry and skips the upstream call.
        """
        user = await db.scalar(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not user.github_refresh_token or not is_token_expiring_soon(
            user.github_token_expires_at, self.refresh_threshold_seconds
        ):
            await db.commit()
            logger.info("GitHub token already refreshed by a concurrent request", extra={"user_id": user.id})
            return user

        try:
            refreshed = await self.github_client.refresh_access_token(decrypt(user.github_refresh_token))
            expires_at = calculate_token_expiration(refreshed.expires_in)
        except TokenRefreshError:
            record_github_oauth_operation("refresh", success=False)
            raise
        except (ValueError, TypeError) as exc:
            record_github_oauth_operation("refresh", success=False)
            raise TokenRefreshError("Malformed GitHub refresh response") from exc

        user.github_access_token = encrypt(refreshed.access_token)
        if refreshed.refresh_token:
            user.github_refresh_token = encrypt(refreshed.refresh_token)
        user.github_token_expires_at = expires_at
        await db.commit()

        record_github_oauth_operation("refresh", success=True)
        logger.info("GitHub token proactively refreshed", extra={"user_id": user.id})
        return user
