"""Error codes and exception types shared across services and routes"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in API error bodies"""

    UNAUTHORIZED = "UNAUTHORIZED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_USER_IDENTIFIER = "MISSING_USER_IDENTIFIER"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_NOT_WHITELISTED = "USER_NOT_WHITELISTED"
    TOKEN_NOT_AVAILABLE = "TOKEN_NOT_AVAILABLE"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    WHITELIST_REVOKED = "WHITELIST_REVOKED"
    REVOCATION_FAILED = "REVOCATION_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class APIError(Exception):
    """Error rendered to the caller as ``{"error": code, "message": message}``"""

    def __init__(self, status_code: int, code: ErrorCode, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------

class UserNotFoundError(Exception):
    """No user row exists for the given identifier"""


class EncryptionError(Exception):
    """Encrypting a value failed"""


class DecryptionError(Exception):
    """Ciphertext is malformed, tampered with, or was sealed with another key"""


class EphemeralStoreError(Exception):
    """A call to the shared ephemeral store failed or timed out"""

    user_message = "We are experiencing technical difficulties. Please try again in a few moments."


class OAuthExchangeError(Exception):
    """Exchanging an authorization code for a token failed"""


class GitHubAPIError(Exception):
    """A GitHub REST API call failed"""


class TokenRefreshError(Exception):
    """Refreshing a GitHub access token failed"""


class ServiceAlreadyExistsError(Exception):
    """A service with this identifier is already registered"""


class ServiceNotFoundError(Exception):
    """No service with this identifier is registered"""


class RefreshErrorKind(str, Enum):
    """Reasons a JWT refresh is refused"""

    EXPIRED = "EXPIRED_TOKEN"
    INVALID = "INVALID_TOKEN"
    REVOKED = "TOKEN_REVOKED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    WHITELIST_REVOKED = "WHITELIST_REVOKED"


_REFRESH_ERROR_HTTP = {
    RefreshErrorKind.EXPIRED: (
        401, ErrorCode.EXPIRED_TOKEN,
        "The provided token has expired. Please authenticate again.",
    ),
    RefreshErrorKind.INVALID: (
        400, ErrorCode.INVALID_TOKEN,
        "The provided token is invalid or malformed.",
    ),
    RefreshErrorKind.REVOKED: (
        401, ErrorCode.TOKEN_REVOKED,
        "This token has been revoked.",
    ),
    RefreshErrorKind.USER_NOT_FOUND: (
        404, ErrorCode.USER_NOT_FOUND,
        "User associated with this token no longer exists.",
    ),
    RefreshErrorKind.WHITELIST_REVOKED: (
        403, ErrorCode.WHITELIST_REVOKED,
        "Your access has been revoked. Please contact the administrator.",
    ),
}


class RefreshError(Exception):
    """JWT refresh refused for one of the :class:`RefreshErrorKind` reasons"""

    def __init__(self, kind: RefreshErrorKind, detail: Optional[str] = None):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail

    def to_api_error(self) -> APIError:
        status_code, code, message = _REFRESH_ERROR_HTTP[self.kind]
        return APIError(status_code, code, message)
