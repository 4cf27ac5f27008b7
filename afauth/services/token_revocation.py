"""JWT revocation ledger"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.config import settings
from afauth.middleware.monitoring import record_jwt_operation, record_revocation_check
from afauth.models.revoked_token import RevokedToken
from afauth.models.user import User
from afauth.services.jwt_service import verify_jwt
from afauth.utils.logger import logger


@dataclass
class RevocationResult:
    success: bool
    jti: Optional[str] = None
    error: Optional[str] = None


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


async def revoke_token(
    db: AsyncSession,
    token: str,
    revoked_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> RevocationResult:
    """Add the token's jti to the ledger.

    The token must verify; expired or invalid tokens cannot be revoked.
    Revoking an already-revoked jti succeeds without writing a second row.
    """
    result = verify_jwt(token)
    if not result.valid:
        record_jwt_operation("revoke", success=False)
        return RevocationResult(success=False, error="Invalid token")

    claims = result.claims
    jti = claims.get("jti")
    if not jti:
        record_jwt_operation("revoke", success=False)
        return RevocationResult(success=False, error="Token missing jti claim")

    existing = await db.scalar(select(RevokedToken).where(RevokedToken.jti == jti))
    if existing is not None:
        logger.info("Token already revoked", extra={"jti": jti})
        return RevocationResult(success=True, jti=jti)

    db.add(RevokedToken(
        jti=jti,
        user_id=claims.get("sub", ""),
        token_issued_at=_from_timestamp(claims["iat"]),
        token_expires_at=_from_timestamp(claims["exp"]),
        revoked_by=revoked_by,
        reason=reason,
    ))
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent revocation of the same jti
        await db.rollback()
        logger.info("Token revoked concurrently", extra={"jti": jti})
        return RevocationResult(success=True, jti=jti)

    record_jwt_operation("revoke", success=True)
    logger.info(
        "Token revoked",
        extra={"jti": jti, "user_id": claims.get("sub"), "action": "revoke_token"},
    )
    return RevocationResult(success=True, jti=jti)


async def revoke_all_user_tokens(
    db: AsyncSession,
    user_id: str,
    revoked_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> RevocationResult:
    """Invalidate every session of a user by clearing the whitelist flag.

    Refresh and token retrieval both re-check the flag, so outstanding
    tokens stop being honoured without tracking each jti.
    """
    user = await db.get(User, user_id)
    if user is None:
        return RevocationResult(success=False, error="User not found")

    user.is_whitelisted = False
    await db.commit()

    logger.warning(
        f"All tokens revoked for user (by={revoked_by or 'unknown'}, reason={reason or 'none'})",
        extra={"user_id": user_id, "action": "revoke_all_user_tokens"},
    )
    return RevocationResult(success=True)


async def is_token_revoked(db: AsyncSession, jti: str) -> bool:
    revoked = await db.scalar(select(RevokedToken.id).where(RevokedToken.jti == jti)) is not None
    record_revocation_check(revoked)
    return revoked


async def get_revocation_status(db: AsyncSession, jti: str) -> Optional[RevokedToken]:
    return await db.scalar(select(RevokedToken).where(RevokedToken.jti == jti))


async def cleanup_expired_revoked_tokens(
    db: AsyncSession,
    retention_days: int = 7,
    dry_run: bool = False,
) -> int:
    """Delete (or count, when ``dry_run``) ledger rows whose token expired
    more than ``retention_days`` ago.

    The JWT clock tolerance is added to the window: verification still
    accepts a token for that long after its ``exp``.

    Returns:
        Number of rows deleted or, in dry-run mode, eligible for deletion.
    """
    if retention_days < 0:
        raise ValueError("retention_days must be zero or positive")

    cutoff = datetime.now(timezone.utc) - timedelta(
        days=retention_days, seconds=settings.JWT_CLOCK_TOLERANCE_SECONDS
    )
    condition = RevokedToken.token_expires_at < cutoff

    if dry_run:
        count = await db.scalar(select(func.count()).select_from(RevokedToken).where(condition))
        logger.info(
            f"Dry run: {count} revoked tokens eligible for cleanup",
            extra={"count": count, "action": "cleanup_revoked_tokens"},
        )
        return count

    result = await db.execute(delete(RevokedToken).where(condition))
    await db.commit()

    logger.info(
        f"Cleaned up {result.rowcount} expired revoked tokens",
        extra={"count": result.rowcount, "action": "cleanup_revoked_tokens"},
    )
    return result.rowcount
