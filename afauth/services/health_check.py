"""Component health checks"""
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from jose import jwt
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.config import settings
from afauth.services.ephemeral_store import EphemeralStore
from afauth.services.jwt_service import get_public_key_pem
from afauth.services.key_rotation import get_all_key_rotation_statuses
from afauth.utils.cache import TimedCache
from afauth.utils.encryption import decrypt, encrypt, is_encryption_configured
from afauth.utils.logger import logger

GITHUB_APP_CACHE_TTL_SECONDS = 60
KEY_ROTATION_CACHE_TTL_SECONDS = 3600
DATABASE_SLOW_MS = 1000
# GitHub rejects App JWTs with iat in the future; back-date to absorb skew
GITHUB_APP_JWT_CLOCK_OFFSET_SECONDS = 60


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    status: HealthStatus
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return {key: value for key, value in data.items() if value not in (None, {})}


CRITICAL_COMPONENTS = ("database", "ephemeral_store", "encryption")


class HealthChecker:
    """Runs component checks; the slow or rate-limited ones are cached.

    Caches belong to the instance so tests control their age through the
    injected clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.github_app_cache: TimedCache[ComponentHealth] = TimedCache(GITHUB_APP_CACHE_TTL_SECONDS, clock)
        self.key_rotation_cache: TimedCache[ComponentHealth] = TimedCache(KEY_ROTATION_CACHE_TTL_SECONDS, clock)

    def clear_caches(self) -> None:
        self.github_app_cache.clear()
        self.key_rotation_cache.clear()

    async def check_database(self, db: AsyncSession) -> ComponentHealth:
        try:
            start = time.time()
            await db.execute(text("SELECT 1"))
            latency_ms = round((time.time() - start) * 1000, 2)
        except Exception:
            logger.error("Database health check failed", exc_info=True)
            return ComponentHealth(HealthStatus.UNHEALTHY, "Database connection failed")

        if latency_ms > DATABASE_SLOW_MS:
            return ComponentHealth(HealthStatus.DEGRADED, "Database latency is high", {"latency_ms": latency_ms})
        return ComponentHealth(HealthStatus.HEALTHY, details={"latency_ms": latency_ms})

    async def check_ephemeral_store(self, store: EphemeralStore) -> ComponentHealth:
        start = time.time()
        if not await store.ping():
            return ComponentHealth(HealthStatus.UNHEALTHY, "Ephemeral store unreachable")
        return ComponentHealth(HealthStatus.HEALTHY, details={"latency_ms": round((time.time() - start) * 1000, 2)})

    def check_encryption(self) -> ComponentHealth:
        if not is_encryption_configured():
            return ComponentHealth(HealthStatus.UNHEALTHY, "Encryption key missing or too short")
        try:
            probe = "health-check"
            if decrypt(encrypt(probe)) != probe:
                return ComponentHealth(HealthStatus.UNHEALTHY, "Encryption round-trip mismatch")
        except Exception:
            logger.error("Encryption health check failed", exc_info=True)
            return ComponentHealth(HealthStatus.UNHEALTHY, "Encryption round-trip failed")
        return ComponentHealth(HealthStatus.HEALTHY)

    def check_jwt_keys(self) -> ComponentHealth:
        try:
            get_public_key_pem()
        except Exception:
            logger.error("JWT key health check failed", exc_info=True)
            return ComponentHealth(HealthStatus.UNHEALTHY, "JWT keys unavailable")
        return ComponentHealth(HealthStatus.HEALTHY, details={"algorithm": settings.JWT_ALGORITHM})

    def check_github_app(self) -> ComponentHealth:
        """Validate the GitHub App private key by signing a throwaway App JWT.

        No request is made to GitHub.
        """
        cached = self.github_app_cache.get()
        if cached is not None:
            return ComponentHealth(
                cached.status,
                cached.message,
                {**cached.details, "cached": True, "cache_age_seconds": round(self.github_app_cache.age, 2)},
            )

        if not (settings.GITHUB_APP_ID and settings.GITHUB_APP_PRIVATE_KEY and settings.GITHUB_APP_INSTALLATION_ID):
            result = ComponentHealth(HealthStatus.UNHEALTHY, "GitHub App configuration incomplete")
        else:
            now = datetime.now(timezone.utc)
            payload = {
                "iat": int((now - timedelta(seconds=GITHUB_APP_JWT_CLOCK_OFFSET_SECONDS)).timestamp()),
                "exp": int((now + timedelta(seconds=GITHUB_APP_JWT_CLOCK_OFFSET_SECONDS)).timestamp()),
                "iss": settings.GITHUB_APP_ID,
            }
            try:
                jwt.encode(payload, settings.GITHUB_APP_PRIVATE_KEY.replace("\\n", "\n"), algorithm="RS256")
                result = ComponentHealth(HealthStatus.HEALTHY)
            except Exception:
                logger.error("Failed to sign test JWT with GitHub App private key")
                result = ComponentHealth(HealthStatus.UNHEALTHY, "GitHub App private key invalid")

        self.github_app_cache.set(result)
        return result

    async def check_key_rotation(self, db: AsyncSession) -> ComponentHealth:
        cached = self.key_rotation_cache.get()
        if cached is not None:
            return cached

        try:
            statuses = await get_all_key_rotation_statuses(db)
        except Exception:
            logger.error("Key rotation health check failed", exc_info=True)
            return ComponentHealth(HealthStatus.DEGRADED, "Key rotation status unavailable")

        overdue = [status.key_identifier for status in statuses if status.is_overdue]
        if overdue:
            result = ComponentHealth(
                HealthStatus.DEGRADED, "Key rotation overdue", {"overdue_keys": overdue}
            )
        else:
            result = ComponentHealth(HealthStatus.HEALTHY, details={"tracked_keys": len(statuses)})

        self.key_rotation_cache.set(result)
        return result

    async def check_all(self, db: AsyncSession, store: EphemeralStore) -> Dict[str, Any]:
        components = {
            "database": await self.check_database(db),
            "ephemeral_store": await self.check_ephemeral_store(store),
            "encryption": self.check_encryption(),
            "jwt_keys": self.check_jwt_keys(),
            "github_app": self.check_github_app(),
            "key_rotation": await self.check_key_rotation(db),
        }
        return {
            "status": overall_status(components).value,
            "components": {name: health.to_dict() for name, health in components.items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def check_ready(self, db: AsyncSession, store: EphemeralStore) -> Dict[str, Any]:
        components = {
            "database": await self.check_database(db),
            "ephemeral_store": await self.check_ephemeral_store(store),
            "encryption": self.check_encryption(),
        }
        unhealthy = [name for name, health in components.items() if health.status != HealthStatus.HEALTHY]
        result: Dict[str, Any] = {
            "ready": not unhealthy,
            "components": {name: health.status.value for name, health in components.items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if unhealthy:
            result["reason"] = f"Unhealthy components: {', '.join(unhealthy)}"
            logger.warning(result["reason"])
        return result


def overall_status(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Unhealthy if a critical component is; degraded if anything is not healthy"""
    if any(
        components[name].status == HealthStatus.UNHEALTHY
        for name in CRITICAL_COMPONENTS
        if name in components
    ):
        return HealthStatus.UNHEALTHY
    if any(health.status != HealthStatus.HEALTHY for health in components.values()):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


health_checker = HealthChecker()
