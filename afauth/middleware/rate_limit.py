"""Rate limiting for the public endpoints"""
import base64
import binascii

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from afauth.config import settings


def get_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting

    Priority:
    1. Service identifier (from service credentials on the github-token route)
    2. IP address
    """
    auth_header = request.headers.get("authorization", "")
    if request.url.path == "/api/github-token" and auth_header:
        identifier = _service_identifier(auth_header)
        if identifier:
            return f"service:{identifier}"

    return get_remote_address(request)


def _service_identifier(auth_header: str) -> str:
    if auth_header.startswith("Bearer "):
        return auth_header[7:].split(":", 1)[0]
    if auth_header.startswith("Basic "):
        try:
            decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return ""
        return decoded.split(":", 1)[0]
    return ""


limiter = Limiter(
    key_func=get_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)

