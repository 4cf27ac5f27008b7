"""Pydantic schemas for request/response validation"""
from afauth.schemas.github_token import GitHubTokenRequest, GitHubTokenResponse, GitHubTokenUser
from afauth.schemas.token import (
    RevocationDetails,
    RevocationStatusResponse,
    SessionResponse,
    TokenRefreshRequest,
    TokenResponse,
    TokenRevokeRequest,
    TokenRevokeResponse,
)

__all__ = [
    "GitHubTokenRequest",
    "GitHubTokenResponse",
    "GitHubTokenUser",
    "RevocationDetails",
    "RevocationStatusResponse",
    "SessionResponse",
    "TokenRefreshRequest",
    "TokenResponse",
    "TokenRevokeRequest",
    "TokenRevokeResponse",
]
