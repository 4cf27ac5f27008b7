"""Security response headers and the per-request CSP nonce"""
import base64
import secrets
from typing import Callable, Dict, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from afauth.config import settings

# (directive, setting holding its comma-separated sources)
CSP_DIRECTIVES = (
    ("default-src", "CSP_DEFAULT_SRC"),
    ("script-src", "CSP_SCRIPT_SRC"),
    ("style-src", "CSP_STYLE_SRC"),
    ("img-src", "CSP_IMG_SRC"),
    ("connect-src", "CSP_CONNECT_SRC"),
    ("font-src", "CSP_FONT_SRC"),
    ("object-src", "CSP_OBJECT_SRC"),
    ("media-src", "CSP_MEDIA_SRC"),
    ("frame-src", "CSP_FRAME_SRC"),
    ("form-action", "CSP_FORM_ACTION"),
    ("frame-ancestors", "CSP_FRAME_ANCESTORS"),
    ("base-uri", "CSP_BASE_URI"),
)
NONCE_DIRECTIVES = ("script-src", "style-src")

# Interactive API docs load their assets from a CDN
CSP_EXEMPT_PATHS = ("/docs", "/redoc")


def generate_nonce() -> str:
    """Base64 of 16 random bytes"""
    return base64.b64encode(secrets.token_bytes(16)).decode()


def _sources(value: str) -> List[str]:
    return [source.strip() for source in value.split(",") if source.strip()]


def build_content_security_policy(nonce: Optional[str] = None) -> str:
    directives = []
    for name, setting in CSP_DIRECTIVES:
        sources = _sources(getattr(settings, setting))
        if nonce and name in NONCE_DIRECTIVES:
            sources.append(f"'nonce-{nonce}'")
        if sources:
            directives.append(f"{name} {' '.join(sources)}")
    if settings.CSP_UPGRADE_INSECURE_REQUESTS and settings.is_production:
        directives.append("upgrade-insecure-requests")
    return "; ".join(directives)


def build_security_headers(nonce: Optional[str] = None, include_csp: bool = True) -> Dict[str, str]:
    """Headers applied to every response under the current settings"""
    headers = {
        "X-Frame-Options": settings.X_FRAME_OPTIONS,
        "Referrer-Policy": settings.REFERRER_POLICY,
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Permitted-Cross-Domain-Policies": "none",
    }
    if settings.X_CONTENT_TYPE_OPTIONS:
        headers["X-Content-Type-Options"] = "nosniff"
    if settings.PERMISSIONS_POLICY:
        headers["Permissions-Policy"] = settings.PERMISSIONS_POLICY
    if settings.CSP_ENABLED and include_csp:
        headers["Content-Security-Policy"] = build_content_security_policy(nonce)
    if settings.HSTS_ENABLED and settings.is_production:
        hsts = f"max-age={settings.HSTS_MAX_AGE}"
        if settings.HSTS_INCLUDE_SUBDOMAINS:
            hsts += "; includeSubDomains"
        if settings.HSTS_PRELOAD:
            hsts += "; preload"
        headers["Strict-Transport-Security"] = hsts
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Sets security headers and exposes a fresh CSP nonce as ``request.state.csp_nonce``"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        nonce = generate_nonce()
        request.state.csp_nonce = nonce

        response = await call_next(request)

        include_csp = not request.url.path.startswith(CSP_EXEMPT_PATHS)
        for name, value in build_security_headers(nonce, include_csp=include_csp).items():
            response.headers[name] = value
        return response
