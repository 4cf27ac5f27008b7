"""User records created by the OAuth callback"""
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.database import dialect_insert
from afauth.models.user import User
from afauth.services.github_oauth import GitHubTokenResponse, GitHubUser, calculate_token_expiration
from afauth.utils.encryption import encrypt
from afauth.utils.logger import logger


async def upsert_user_from_oauth(
    db: AsyncSession,
    github_user: GitHubUser,
    tokens: GitHubTokenResponse,
) -> User:
    """Create or update the user keyed by GitHub id with freshly encrypted tokens.

    New users start out not whitelisted; the flag of existing users is kept.
    """
    now = datetime.now(timezone.utc)
    token_values = {
        "github_access_token": encrypt(tokens.access_token),
        "github_refresh_token": encrypt(tokens.refresh_token),
        "github_token_expires_at": calculate_token_expiration(tokens.expires_in, now),
        "updated_at": now,
    }

    stmt = dialect_insert(db, User).values(
        github_user_id=github_user.id,
        is_whitelisted=False,
        created_at=now,
        **token_values,
    ).on_conflict_do_update(
        index_elements=[User.github_user_id],
        set_=token_values,
    )
    await db.execute(stmt)
    await db.commit()

    user = await db.scalar(
        select(User)
        .where(User.github_user_id == github_user.id)
        .execution_options(populate_existing=True)
    )
    logger.info(
        "User upserted",
        extra={"user_id": user.id, "github_user_id": github_user.id},
    )
    return user
