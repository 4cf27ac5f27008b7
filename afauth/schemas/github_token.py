"""GitHub token retrieval schemas"""
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from afauth.schemas.token import CamelModel


class GitHubTokenRequest(CamelModel):
    """Identify the user by either internal id or GitHub id"""

    user_id: Optional[str] = Field(None, max_length=255)
    github_user_id: Optional[str] = Field(None, max_length=32)

    @field_validator("github_user_id", mode="before")
    @classmethod
    def _coerce_numeric(cls, value):
        # Clients may send the GitHub id as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class GitHubTokenUser(CamelModel):
    id: str
    github_user_id: str
    is_whitelisted: bool


class GitHubTokenResponse(CamelModel):
    token: str
    expires_at: Optional[datetime] = None
    user: GitHubTokenUser
