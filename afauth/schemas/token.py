"""JWT API schemas"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TokenResponse(CamelModel):
    """Newly issued or refreshed JWT"""

    token: str
    expires_in: int = Field(..., description="Seconds until expiry")
    expires_at: datetime


class TokenRefreshRequest(CamelModel):
    token: str = Field(..., min_length=1)


class TokenRevokeRequest(CamelModel):
    token: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)
    revoked_by: Optional[str] = Field(None, max_length=255)


class TokenRevokeResponse(CamelModel):
    success: bool
    jti: Optional[str] = None
    message: str


class RevocationDetails(CamelModel):
    jti: str
    user_id: str
    revoked_at: datetime
    revoked_by: Optional[str] = None
    reason: Optional[str] = None
    token_expires_at: datetime


class RevocationStatusResponse(CamelModel):
    revoked: bool
    jti: Optional[str] = None
    details: Optional[RevocationDetails] = None


class SessionResponse(CamelModel):
    """Identity behind the presented JWT"""

    user_id: str
    github_id: Optional[str] = None
    jti: Optional[str] = None
