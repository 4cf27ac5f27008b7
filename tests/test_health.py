"""Tests for health checks"""
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from afauth.config import settings
from afauth.services.health_check import (
    ComponentHealth,
    HealthChecker,
    HealthStatus,
    overall_status,
)
from afauth.services.key_rotation import record_key_rotation
from afauth.utils.cache import TimedCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _app_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def test_timed_cache_expiry():
    """Test cached values expire after the TTL"""
    clock = FakeClock()
    cache = TimedCache(60, clock)
    cache.set("value")

    clock.now += 59
    assert cache.get() == "value"
    assert cache.age == 59

    clock.now += 2
    assert cache.get() is None
    assert cache.age is None


def test_overall_status():
    """Test critical components decide unhealthy, others only degrade"""
    healthy = ComponentHealth(HealthStatus.HEALTHY)
    degraded = ComponentHealth(HealthStatus.DEGRADED)
    unhealthy = ComponentHealth(HealthStatus.UNHEALTHY)

    assert overall_status({"database": healthy, "github_app": healthy}) == HealthStatus.HEALTHY
    assert overall_status({"database": healthy, "github_app": unhealthy}) == HealthStatus.DEGRADED
    assert overall_status({"database": healthy, "key_rotation": degraded}) == HealthStatus.DEGRADED
    assert overall_status({"database": unhealthy, "github_app": healthy}) == HealthStatus.UNHEALTHY
    assert overall_status({"encryption": unhealthy}) == HealthStatus.UNHEALTHY


def test_github_app_incomplete_config(monkeypatch):
    """Test missing GitHub App settings are unhealthy"""
    monkeypatch.setattr(settings, "GITHUB_APP_ID", None)

    result = HealthChecker().check_github_app()

    assert result.status == HealthStatus.UNHEALTHY


def test_github_app_check_cached(monkeypatch):
    """Test the GitHub App result is cached for 60 seconds"""
    monkeypatch.setattr(settings, "GITHUB_APP_ID", "12345")
    monkeypatch.setattr(settings, "GITHUB_APP_PRIVATE_KEY", _app_key_pem())
    monkeypatch.setattr(settings, "GITHUB_APP_INSTALLATION_ID", "67890")
    clock = FakeClock()
    checker = HealthChecker(clock)

    first = checker.check_github_app()
    assert first.status == HealthStatus.HEALTHY
    assert "cached" not in first.details

    # Broken config is not noticed while the cached result is fresh
    monkeypatch.setattr(settings, "GITHUB_APP_PRIVATE_KEY", "not a key")
    clock.now += 30
    second = checker.check_github_app()
    assert second.status == HealthStatus.HEALTHY
    assert second.details["cached"] is True
    assert second.details["cache_age_seconds"] == 30

    clock.now += 31
    third = checker.check_github_app()
    assert third.status == HealthStatus.UNHEALTHY

    checker.clear_caches()
    assert checker.github_app_cache.get() is None


async def test_key_rotation_check(db):
    """Test overdue keys degrade the key rotation component"""
    checker = HealthChecker(FakeClock())
    await record_key_rotation(db, "fresh", "other", rotation_interval_days=30)
    assert (await checker.check_key_rotation(db)).status == HealthStatus.HEALTHY

    checker.clear_caches()
    record = await record_key_rotation(db, "stale", "other", rotation_interval_days=1)
    record.next_rotation_due = record.last_rotated_at.replace(year=record.last_rotated_at.year - 1)
    await db.commit()

    result = await checker.check_key_rotation(db)
    assert result.status == HealthStatus.DEGRADED
    assert result.details["overdue_keys"] == ["stale"]


async def test_health_endpoint(client, monkeypatch):
    """Test /health reports every component"""
    monkeypatch.setattr(settings, "GITHUB_APP_ID", None)

    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert set(data["components"]) == {
        "database", "ephemeral_store", "encryption", "jwt_keys", "github_app", "key_rotation",
    }
    assert data["components"]["database"]["status"] == "healthy"
    assert data["components"]["github_app"]["status"] == "unhealthy"
    assert data["service"] == settings.SERVICE_NAME


async def test_health_endpoint_store_down(client, store):
    """Test an unreachable store makes the service unhealthy"""
    store.available = False

    response = await client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


async def test_readiness(client, store):
    """Test readiness follows the critical components"""
    response = await client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["ready"] is True

    store.available = False
    response = await client.get("/health/ready")
    assert response.status_code == 503
    data = response.json()
    assert data["ready"] is False
    assert "ephemeral_store" in data["reason"]


async def test_liveness(client):
    """Test the liveness probe"""
    response = await client.get("/health/live")

    assert response.status_code == 200
    assert response.json()["status"] == "alive"


async def test_root(client):
    """Test the root endpoint"""
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "operational"
