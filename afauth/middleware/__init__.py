"""Middleware modules for metrics, rate limiting and security headers"""
from afauth.middleware.monitoring import (
    MonitoringMiddleware,
    record_auth_failure,
    record_github_oauth_operation,
    record_github_token_retrieval,
    record_jwt_operation,
    record_revocation_check,
)
from afauth.middleware.rate_limit import get_identifier, limiter
from afauth.middleware.security_headers import SecurityHeadersMiddleware, generate_nonce

__all__ = [
    "MonitoringMiddleware",
    "SecurityHeadersMiddleware",
    "generate_nonce",
    "record_auth_failure",
    "record_github_oauth_operation",
    "record_github_token_retrieval",
    "record_jwt_operation",
    "record_revocation_check",
    "limiter",
    "get_identifier",
]
