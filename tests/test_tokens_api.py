"""Tests for JWT endpoints"""
from afauth.config import settings
from afauth.services.jwt_service import generate_jwt, sign_jwt, verify_jwt
from afauth.services.token_revocation import revoke_token


async def test_issue_token(client, make_user):
    """Test issuing a JWT for an existing user"""
    user = await make_user(github_user_id=99)

    response = await client.get("/api/token", params={"userId": user.id})
    assert response.status_code == 200

    data = response.json()
    assert data["expiresIn"] == settings.JWT_EXPIRE_SECONDS
    assert "expiresAt" in data
    claims = verify_jwt(data["token"]).claims
    assert claims["sub"] == user.id
    assert claims["githubId"] == "99"


async def test_issue_token_unknown_user(client):
    """Test issuing for a missing user is 404"""
    response = await client.get("/api/token", params={"userId": "ghost"})

    assert response.status_code == 404
    assert response.json()["error"] == "USER_NOT_FOUND"


async def test_issue_token_requires_user_id(client):
    """Test userId is required"""
    response = await client.get("/api/token")

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_refresh_token(client, db, make_user):
    """Test exchanging a valid JWT for a new one"""
    user = await make_user()
    token = await generate_jwt(db, user.id)

    response = await client.post("/api/token", json={"token": token})
    assert response.status_code == 200

    new_token = response.json()["token"]
    assert verify_jwt(new_token).claims["jti"] != verify_jwt(token).claims["jti"]


async def test_refresh_invalid_token(client):
    """Test a malformed token is 400"""
    response = await client.post("/api/token", json={"token": "garbage"})

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_TOKEN"


async def test_refresh_expired_token(client, db, make_user, monkeypatch):
    """Test an expired token is 401"""
    user = await make_user()
    monkeypatch.setattr(settings, "JWT_EXPIRE_SECONDS", -3600)
    token = await generate_jwt(db, user.id)
    monkeypatch.undo()

    response = await client.post("/api/token", json={"token": token})

    assert response.status_code == 401
    assert response.json()["error"] == "EXPIRED_TOKEN"


async def test_refresh_whitelist_revoked(client, db, make_user):
    """Test refresh after whitelist removal is 403"""
    user = await make_user(is_whitelisted=True)
    token = await generate_jwt(db, user.id)
    user.is_whitelisted = False
    await db.commit()

    response = await client.post("/api/token", json={"token": token})

    assert response.status_code == 403
    assert response.json()["error"] == "WHITELIST_REVOKED"


async def test_revoke_then_refresh(client, db, make_user):
    """Test a revoked token can no longer be refreshed"""
    user = await make_user()
    token = await generate_jwt(db, user.id)

    response = await client.post(
        "/api/token/revoke", json={"token": token, "reason": "logout", "revokedBy": "user"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["jti"] == verify_jwt(token).claims["jti"]

    response = await client.post("/api/token", json={"token": token})
    assert response.status_code == 401
    assert response.json()["error"] == "TOKEN_REVOKED"


async def test_revoke_twice(client, db, make_user):
    """Test revocation is idempotent over HTTP"""
    user = await make_user()
    token = await generate_jwt(db, user.id)

    first = await client.post("/api/token/revoke", json={"token": token})
    second = await client.post("/api/token/revoke", json={"token": token})

    assert first.status_code == second.status_code == 200
    assert first.json()["jti"] == second.json()["jti"]


async def test_revoke_invalid_token(client):
    """Test revoking garbage fails"""
    response = await client.post("/api/token/revoke", json={"token": "garbage"})

    assert response.status_code == 400
    assert response.json()["error"] == "REVOCATION_FAILED"


async def test_revocation_status(client, db, make_user):
    """Test revocation status before and after revoking"""
    user = await make_user()
    token = await generate_jwt(db, user.id)
    jti = verify_jwt(token).claims["jti"]

    response = await client.get("/api/token/revocation-status", params={"jti": jti})
    assert response.json() == {"revoked": False, "jti": jti}

    await client.post("/api/token/revoke", json={"token": token, "reason": "test"})

    response = await client.get("/api/token/revocation-status", params={"jti": jti})
    data = response.json()
    assert data["revoked"] is True
    assert data["details"]["jti"] == jti
    assert data["details"]["userId"] == user.id
    assert data["details"]["reason"] == "test"


async def test_public_key_pem(client):
    """Test the PEM endpoint"""
    response = await client.get("/api/jwks")

    assert response.status_code == 200
    assert response.text.startswith("-----BEGIN PUBLIC KEY-----")


async def test_well_known_jwks(client):
    """Test the JWKS document"""
    response = await client.get("/.well-known/jwks.json")

    assert response.status_code == 200
    data = response.json()
    assert data["keys"][0]["kty"] == "RSA"
    assert data["algorithm"] == "RS256"
    assert data["publicKeyEndpoint"] == "/api/jwks"


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def test_me(client, db, make_user):
    """Test a whitelisted user's JWT resolves to its identity"""
    user = await make_user(github_user_id=77)
    token = await generate_jwt(db, user.id)

    response = await client.get("/api/me", headers=_bearer(token))

    assert response.status_code == 200
    assert response.json() == {
        "userId": user.id,
        "githubId": "77",
        "jti": verify_jwt(token).claims["jti"],
    }


async def test_me_missing_header(client):
    """Test a request without a Bearer JWT is 401"""
    response = await client.get("/api/me")
    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"

    response = await client.get("/api/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


async def test_me_invalid_token(client):
    """Test a malformed JWT is 401 INVALID_TOKEN"""
    response = await client.get("/api/me", headers=_bearer("garbage"))

    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_TOKEN"


async def test_me_token_without_subject(client):
    """Test a signed token lacking sub is refused"""
    response = await client.get("/api/me", headers=_bearer(sign_jwt({"githubId": "1"})))

    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_TOKEN"


async def test_me_expired_token(client, db, make_user, monkeypatch):
    """Test an expired JWT is 401 EXPIRED_TOKEN"""
    user = await make_user()
    monkeypatch.setattr(settings, "JWT_EXPIRE_SECONDS", -3600)
    token = await generate_jwt(db, user.id)
    monkeypatch.undo()

    response = await client.get("/api/me", headers=_bearer(token))

    assert response.status_code == 401
    assert response.json()["error"] == "EXPIRED_TOKEN"


async def test_me_revoked_token(client, db, make_user):
    """Test a revoked JWT is refused by both dependencies"""
    user = await make_user()
    token = await generate_jwt(db, user.id)
    assert (await revoke_token(db, token)).success is True

    for path in ("/api/me", "/api/token/introspect"):
        response = await client.get(path, headers=_bearer(token))
        assert response.status_code == 401
        assert response.json()["error"] == "TOKEN_REVOKED"


async def test_me_unknown_user(client):
    """Test a valid JWT for a user that does not exist is 404"""
    token = sign_jwt({"sub": "ghost", "githubId": "1", "isWhitelisted": True})

    response = await client.get("/api/me", headers=_bearer(token))

    assert response.status_code == 404
    assert response.json()["error"] == "USER_NOT_FOUND"


async def test_me_whitelist_revoked(client, db, make_user):
    """Test a de-whitelisted user is refused even though the token claims otherwise"""
    user = await make_user(is_whitelisted=True)
    token = await generate_jwt(db, user.id)
    user.is_whitelisted = False
    await db.commit()

    response = await client.get("/api/me", headers=_bearer(token))

    assert response.status_code == 403
    assert response.json()["error"] == "WHITELIST_REVOKED"


async def test_introspect_ignores_whitelist(client, db, make_user):
    """Test introspection accepts a valid token of a non-whitelisted user"""
    user = await make_user(is_whitelisted=False)
    token = await generate_jwt(db, user.id)

    response = await client.get("/api/token/introspect", headers=_bearer(token))

    assert response.status_code == 200
    assert response.json()["userId"] == user.id
