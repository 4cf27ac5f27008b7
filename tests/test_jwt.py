"""Tests for JWT issuance, verification, refresh and JWKS"""
import base64
import uuid

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from afauth.config import settings
from afauth.errors import RefreshError, RefreshErrorKind, UserNotFoundError
from afauth.services.jwt_service import (
    generate_jwt,
    get_jwks,
    get_public_key,
    refresh_jwt,
    sign_jwt,
    verify_jwt,
)
from afauth.services.token_revocation import revoke_token


def _foreign_token(claims: dict) -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    return jwt.encode(claims, pem, algorithm="RS256")


def test_sign_and_verify():
    """Test a signed token verifies and carries the standard claims"""
    token = sign_jwt({"sub": "user-1", "githubId": "42", "isWhitelisted": True})
    result = verify_jwt(token)

    assert result.valid is True
    claims = result.claims
    assert claims["sub"] == "user-1"
    assert claims["iss"] == settings.JWT_ISSUER
    assert claims["aud"] == settings.JWT_AUDIENCE
    assert claims["exp"] - claims["iat"] == settings.JWT_EXPIRE_SECONDS
    uuid.UUID(claims["jti"])


def test_each_token_gets_new_jti():
    """Test jti is unique per token"""
    first = verify_jwt(sign_jwt({"sub": "user-1"})).claims["jti"]
    second = verify_jwt(sign_jwt({"sub": "user-1"})).claims["jti"]
    assert first != second


def test_verify_expired_token(monkeypatch):
    """Test an expired token is reported as expired"""
    monkeypatch.setattr(settings, "JWT_EXPIRE_SECONDS", -3600)
    token = sign_jwt({"sub": "user-1"})

    result = verify_jwt(token)
    assert result.valid is False
    assert result.expired is True
    assert result.error == "Token expired"


def test_verify_within_clock_tolerance(monkeypatch):
    """Test a token expired by less than the tolerance still verifies"""
    monkeypatch.setattr(settings, "JWT_EXPIRE_SECONDS", -10)
    token = sign_jwt({"sub": "user-1"})

    assert verify_jwt(token).valid is True


def test_verify_foreign_signature():
    """Test a token signed by another key is rejected"""
    token = _foreign_token({
        "sub": "user-1",
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    })

    result = verify_jwt(token)
    assert result.valid is False
    assert result.expired is False
    assert result.error == "Invalid token"


def test_verify_wrong_audience(monkeypatch):
    """Test audience is enforced"""
    monkeypatch.setattr(settings, "JWT_AUDIENCE", "someone-else")
    token = sign_jwt({"sub": "user-1"})
    monkeypatch.undo()

    assert verify_jwt(token).valid is False


def test_verify_garbage():
    """Test malformed input is rejected"""
    assert verify_jwt("not.a.jwt").valid is False


def test_kid_header(monkeypatch):
    """Test the key id is placed in the header when configured"""
    monkeypatch.setattr(settings, "JWT_KEY_ID", "key-2026")
    token = sign_jwt({"sub": "user-1"})

    assert jwt.get_unverified_header(token)["kid"] == "key-2026"
    assert get_jwks()["keys"][0]["kid"] == "key-2026"


def test_jwks_matches_public_key():
    """Test JWKS n and e encode the loaded public key"""
    jwks = get_jwks()
    key = jwks["keys"][0]
    numbers = get_public_key().public_numbers()

    def decode(value: str) -> int:
        return int.from_bytes(base64.urlsafe_b64decode(value + "=" * (-len(value) % 4)), "big")

    assert key["kty"] == "RSA"
    assert key["use"] == "sig"
    assert key["alg"] == "RS256"
    assert decode(key["n"]) == numbers.n
    assert decode(key["e"]) == numbers.e
    assert jwks["publicKeyPEM"].startswith("-----BEGIN PUBLIC KEY-----")


async def test_generate_jwt(db, make_user):
    """Test issued tokens reflect the user's current state"""
    user = await make_user(github_user_id=777, is_whitelisted=True)

    claims = verify_jwt(await generate_jwt(db, user.id)).claims

    assert claims["sub"] == user.id
    assert claims["githubId"] == "777"
    assert claims["isWhitelisted"] is True


async def test_generate_jwt_unknown_user(db):
    """Test issuing for a missing user fails"""
    with pytest.raises(UserNotFoundError):
        await generate_jwt(db, "missing-user")


async def test_refresh_jwt(db, make_user):
    """Test refresh returns a new token for the same user"""
    user = await make_user()
    token = await generate_jwt(db, user.id)

    new_token = await refresh_jwt(db, token)
    old_claims = verify_jwt(token).claims
    new_claims = verify_jwt(new_token).claims

    assert new_claims["sub"] == user.id
    assert new_claims["jti"] != old_claims["jti"]


async def test_refresh_expired_token(db, make_user, monkeypatch):
    """Test an expired token cannot be refreshed"""
    user = await make_user()
    monkeypatch.setattr(settings, "JWT_EXPIRE_SECONDS", -3600)
    token = await generate_jwt(db, user.id)
    monkeypatch.undo()

    with pytest.raises(RefreshError) as exc_info:
        await refresh_jwt(db, token)
    assert exc_info.value.kind == RefreshErrorKind.EXPIRED


async def test_refresh_invalid_token(db):
    """Test a malformed token cannot be refreshed"""
    with pytest.raises(RefreshError) as exc_info:
        await refresh_jwt(db, "garbage")
    assert exc_info.value.kind == RefreshErrorKind.INVALID


async def test_refresh_revoked_token(db, make_user):
    """Test a revoked token cannot be refreshed"""
    user = await make_user()
    token = await generate_jwt(db, user.id)
    assert (await revoke_token(db, token)).success

    with pytest.raises(RefreshError) as exc_info:
        await refresh_jwt(db, token)
    assert exc_info.value.kind == RefreshErrorKind.REVOKED


async def test_refresh_deleted_user(db, make_user):
    """Test refresh fails once the user is gone"""
    user = await make_user()
    token = await generate_jwt(db, user.id)
    await db.delete(user)
    await db.commit()

    with pytest.raises(RefreshError) as exc_info:
        await refresh_jwt(db, token)
    assert exc_info.value.kind == RefreshErrorKind.USER_NOT_FOUND


async def test_refresh_whitelist_revoked(db, make_user):
    """Test refresh fails after the user loses whitelist access"""
    user = await make_user(is_whitelisted=True)
    token = await generate_jwt(db, user.id)
    user.is_whitelisted = False
    await db.commit()

    with pytest.raises(RefreshError) as exc_info:
        await refresh_jwt(db, token)
    assert exc_info.value.kind == RefreshErrorKind.WHITELIST_REVOKED
    assert exc_info.value.to_api_error().status_code == 403
