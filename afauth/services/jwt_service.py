"""JWT service: RS256 keypair management, signing, verification, refresh and JWKS"""
import base64
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.config import settings
from afauth.errors import RefreshError, RefreshErrorKind, UserNotFoundError
from afauth.middleware.monitoring import record_jwt_operation
from afauth.models.user import User
from afauth.utils.logger import logger

# ---------------------------------------------------------------------------
# Keypair management
# ---------------------------------------------------------------------------

_private_key: Any = None   # cryptography RSAPrivateKey object
_public_key: Any = None    # cryptography RSAPublicKey object
_private_pem: Optional[str] = None
_public_pem: Optional[str] = None


def _read_setting_or_file(value: Optional[str], path: Optional[str]) -> Optional[bytes]:
    if value:
        # PEM values passed through env files often carry literal "\n"
        return value.replace("\\n", "\n").encode()
    if path:
        return Path(path).read_bytes()
    return None


def _load_keypair() -> None:
    """Load or auto-generate the RSA keypair.

    Reads JWT_PRIVATE_KEY (or JWT_PRIVATE_KEY_PATH) and, optionally, the
    public half from JWT_PUBLIC_KEY (or JWT_PUBLIC_KEY_PATH); otherwise the
    public key is derived from the private one.
    Outside production a missing private key is replaced by a fresh
    RSA-2048 keypair for this process; in production it is fatal.
    """
    global _private_key, _public_key, _private_pem, _public_pem

    private_pem = _read_setting_or_file(settings.JWT_PRIVATE_KEY, settings.JWT_PRIVATE_KEY_PATH)
    if private_pem:
        private_key = serialization.load_pem_private_key(private_pem, password=None)
        logger.info("JWT signing key loaded from configuration")
    elif settings.is_production:
        raise RuntimeError("JWT_PRIVATE_KEY or JWT_PRIVATE_KEY_PATH must be set in production")
    else:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        logger.warning(
            "JWT_PRIVATE_KEY not set - auto-generated RSA-2048 keypair for this process. "
            "All tokens will be invalidated on restart."
        )

    public_pem = _read_setting_or_file(settings.JWT_PUBLIC_KEY, settings.JWT_PUBLIC_KEY_PATH)
    if public_pem:
        public_key = serialization.load_pem_public_key(public_pem)
    else:
        public_key = private_key.public_key()

    _private_key = private_key
    _public_key = public_key
    _private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    _public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def reset_keypair() -> None:
    """Forget the loaded keys so the next call reloads them from settings"""
    global _private_key, _public_key, _private_pem, _public_pem
    _private_key = _public_key = _private_pem = _public_pem = None


def get_private_key() -> Any:
    """Return the loaded private key, initialising on first call."""
    if _private_key is None:
        _load_keypair()
    return _private_key


def get_public_key() -> Any:
    """Return the loaded public key, initialising on first call."""
    if _public_key is None:
        _load_keypair()
    return _public_key


def get_public_key_pem() -> str:
    """Public key in PEM format for distribution to verifying services"""
    if _public_pem is None:
        _load_keypair()
    return _public_pem


def _get_private_key_pem() -> str:
    if _private_pem is None:
        _load_keypair()
    return _private_pem


# ---------------------------------------------------------------------------
# Signing and verification
# ---------------------------------------------------------------------------

@dataclass
class JWTVerifyResult:
    valid: bool
    claims: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    expired: bool = False


def calculate_jwt_expiration(now: Optional[datetime] = None) -> datetime:
    """Expiry of a token minted at ``now``"""
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=settings.JWT_EXPIRE_SECONDS)


def sign_jwt(claims: Dict[str, Any]) -> str:
    """Sign ``claims`` adding iss, aud, jti, iat and exp."""
    now = int(datetime.now(timezone.utc).timestamp())
    payload: Dict[str, Any] = {
        **claims,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + settings.JWT_EXPIRE_SECONDS,
    }

    headers = {"kid": settings.JWT_KEY_ID} if settings.JWT_KEY_ID else None
    return jwt.encode(payload, _get_private_key_pem(), algorithm=settings.JWT_ALGORITHM, headers=headers)


def verify_jwt(token: str) -> JWTVerifyResult:
    """Verify signature, issuer, audience and expiry (with clock tolerance)"""
    try:
        claims = jwt.decode(
            token,
            get_public_key_pem(),
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options={"leeway": settings.JWT_CLOCK_TOLERANCE_SECONDS},
        )
    except ExpiredSignatureError:
        logger.debug("JWT verification failed: token expired")
        return JWTVerifyResult(valid=False, error="Token expired", expired=True)
    except JWTError as exc:
        logger.debug(f"JWT verification failed: {exc}")
        return JWTVerifyResult(valid=False, error="Invalid token")

    return JWTVerifyResult(valid=True, claims=claims)


def _user_claims(user: User) -> Dict[str, Any]:
    return {
        "sub": user.id,
        "githubId": str(user.github_user_id),
        "isWhitelisted": bool(user.is_whitelisted),
    }


async def generate_jwt(db: AsyncSession, user_id: str) -> str:
    """Mint a token for ``user_id`` reflecting the user's current whitelist status.

    Raises:
        UserNotFoundError: no such user.
    """
    user = await db.get(User, user_id)
    if user is None:
        record_jwt_operation("issue", success=False)
        raise UserNotFoundError(f"User {user_id} not found")

    token = sign_jwt(_user_claims(user))
    record_jwt_operation("issue", success=True)
    logger.info("Issued JWT", extra={"user_id": user.id, "action": "issue_token"})
    return token


async def refresh_jwt(db: AsyncSession, token: str) -> str:
    """Exchange a valid token for a brand-new one (new jti, iat and exp).

    Raises:
        RefreshError: with the :class:`RefreshErrorKind` explaining the refusal.
    """
    from afauth.services.token_revocation import is_token_revoked

    try:
        result = verify_jwt(token)
        if not result.valid:
            kind = RefreshErrorKind.EXPIRED if result.expired else RefreshErrorKind.INVALID
            raise RefreshError(kind, result.error)

        claims = result.claims
        jti = claims.get("jti")
        if not jti or not claims.get("sub"):
            raise RefreshError(RefreshErrorKind.INVALID, "Token is missing required claims")

        if await is_token_revoked(db, jti):
            raise RefreshError(RefreshErrorKind.REVOKED)

        user = await db.get(User, claims["sub"])
        if user is None:
            raise RefreshError(RefreshErrorKind.USER_NOT_FOUND)
        if not user.is_whitelisted:
            logger.info("JWT refresh denied: whitelist revoked", extra={"user_id": user.id})
            raise RefreshError(RefreshErrorKind.WHITELIST_REVOKED)
    except RefreshError:
        record_jwt_operation("refresh", success=False)
        raise

    new_token = sign_jwt(_user_claims(user))
    record_jwt_operation("refresh", success=True)
    logger.info("Refreshed JWT", extra={"user_id": user.id, "jti": jti, "action": "refresh_token"})
    return new_token


# ---------------------------------------------------------------------------
# JWKS
# ---------------------------------------------------------------------------

def get_jwks() -> Dict[str, Any]:
    """Return the public key in JWKS format, plus the PEM for simpler clients."""
    public_key = get_public_key()

    try:
        pub_numbers = public_key.public_numbers()
    except AttributeError:
        raise NotImplementedError("JWKS export is only implemented for RSA public keys")

    def _to_base64url(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(byte_length, "big")).rstrip(b"=").decode()

    key_entry: Dict[str, Any] = {
        "kty": "RSA",
        "use": "sig",
        "alg": settings.JWT_ALGORITHM,
        "kid": settings.JWT_KEY_ID or "default",
        "n": _to_base64url(pub_numbers.n),
        "e": _to_base64url(pub_numbers.e),
    }

    return {
        "keys": [key_entry],
        "algorithm": settings.JWT_ALGORITHM,
        "publicKeyEndpoint": "/api/jwks",
        "publicKeyPEM": get_public_key_pem(),
    }
