"""Service registry: credentials for downstream services and their access audit trail"""
import asyncio
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import bcrypt
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.config import settings
from afauth.database import AsyncSessionLocal
from afauth.errors import ServiceAlreadyExistsError, ServiceNotFoundError
from afauth.models.service_registry import ServiceAuditLog, ServiceRegistry
from afauth.utils.logger import logger


@dataclass
class ServiceAuthResult:
    authenticated: bool
    service: Optional[ServiceRegistry] = None
    error: Optional[str] = None


def generate_api_key() -> str:
    """Generate a secure random API key (64 hex chars)"""
    return secrets.token_hex(32)


async def hash_api_key(api_key: str) -> str:
    """bcrypt-hash an API key in a worker thread"""
    salt = bcrypt.gensalt(rounds=settings.SERVICE_API_KEY_BCRYPT_ROUNDS)
    hashed = await asyncio.to_thread(bcrypt.hashpw, api_key.encode("utf-8"), salt)
    return hashed.decode("utf-8")


async def verify_api_key(api_key: str, hashed_api_key: str) -> bool:
    try:
        return await asyncio.to_thread(
            bcrypt.checkpw, api_key.encode("utf-8"), hashed_api_key.encode("utf-8")
        )
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


async def create_service(
    db: AsyncSession,
    service_identifier: str,
    api_key: str,
    allowed_scopes: Optional[List[str]] = None,
    description: Optional[str] = None,
    is_active: bool = True,
) -> ServiceRegistry:
    """Register a service. The plain API key is hashed and never stored."""
    service = ServiceRegistry(
        service_identifier=service_identifier,
        hashed_api_key=await hash_api_key(api_key),
        allowed_scopes=allowed_scopes or [],
        description=description,
        is_active=is_active,
    )
    db.add(service)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ServiceAlreadyExistsError(f"Service '{service_identifier}' already exists") from exc

    await db.refresh(service)
    logger.info(
        "Service created",
        extra={"service_id": service.id, "service_identifier": service_identifier, "action": "create_service"},
    )
    return service


async def authenticate_service(db: AsyncSession, service_identifier: str, api_key: str) -> ServiceAuthResult:
    """Check a service's credentials.

    Failure reasons are distinct here for logging; the HTTP layer collapses
    them into one generic 401.
    """
    try:
        service = await db.scalar(
            select(ServiceRegistry).where(ServiceRegistry.service_identifier == service_identifier)
        )
        if service is None:
            logger.warning("Service authentication failed: not found", extra={"service_identifier": service_identifier})
            return ServiceAuthResult(authenticated=False, error="Service not found")

        if not service.is_active:
            logger.warning("Service authentication failed: inactive", extra={"service_id": service.id})
            return ServiceAuthResult(authenticated=False, error="Service is inactive")

        if not await verify_api_key(api_key, service.hashed_api_key):
            logger.warning("Service authentication failed: invalid API key", extra={"service_id": service.id})
            return ServiceAuthResult(authenticated=False, error="Invalid API key")

        service.last_used_at = datetime.now(timezone.utc)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error(
            "Service authentication error",
            extra={"service_identifier": service_identifier},
            exc_info=True,
        )
        return ServiceAuthResult(authenticated=False, error="Authentication error")

    logger.debug("Service authenticated", extra={"service_id": service.id})
    return ServiceAuthResult(authenticated=True, service=service)


async def rotate_service_api_key(db: AsyncSession, service_identifier: str, new_api_key: str) -> ServiceRegistry:
    """Replace a service's API key; the old key stops working immediately."""
    hashed = await hash_api_key(new_api_key)
    result = await db.execute(
        update(ServiceRegistry)
        .where(ServiceRegistry.service_identifier == service_identifier)
        .values(
            hashed_api_key=hashed,
            last_api_key_rotated_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ServiceNotFoundError(f"Service '{service_identifier}' not found")
    await db.commit()

    service = await get_service(db, service_identifier)
    await db.refresh(service)
    logger.info(
        "Service API key rotated",
        extra={"service_id": service.id, "service_identifier": service_identifier, "action": "rotate_api_key"},
    )
    return service


async def get_service(db: AsyncSession, service_identifier: str) -> Optional[ServiceRegistry]:
    return await db.scalar(
        select(ServiceRegistry).where(ServiceRegistry.service_identifier == service_identifier)
    )


async def list_services(db: AsyncSession, active_only: bool = False) -> List[ServiceRegistry]:
    query = select(ServiceRegistry).order_by(ServiceRegistry.created_at.desc())
    if active_only:
        query = query.where(ServiceRegistry.is_active.is_(True))
    return list((await db.scalars(query)).all())


async def _set_active(db: AsyncSession, service_identifier: str, is_active: bool) -> ServiceRegistry:
    service = await get_service(db, service_identifier)
    if service is None:
        raise ServiceNotFoundError(f"Service '{service_identifier}' not found")
    service.is_active = is_active
    await db.commit()
    await db.refresh(service)
    logger.info(
        f"Service {'activated' if is_active else 'deactivated'}",
        extra={"service_id": service.id, "service_identifier": service_identifier},
    )
    return service


async def activate_service(db: AsyncSession, service_identifier: str) -> ServiceRegistry:
    return await _set_active(db, service_identifier, True)


async def deactivate_service(db: AsyncSession, service_identifier: str) -> ServiceRegistry:
    """Disable a service without touching its audit history"""
    return await _set_active(db, service_identifier, False)


async def delete_service(db: AsyncSession, service_identifier: str) -> None:
    service = await get_service(db, service_identifier)
    if service is None:
        raise ServiceNotFoundError(f"Service '{service_identifier}' not found")
    await db.delete(service)
    await db.commit()
    logger.warning(
        "Service deleted",
        extra={"service_id": service.id, "service_identifier": service_identifier},
    )


async def log_service_access(
    service_id: str,
    user_id: str,
    action: str,
    success: bool,
    error_message: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Append an audit row in a dedicated session.

    Best-effort: a failure is logged and swallowed so it can never change
    the outcome of the request being audited.
    """
    try:
        async with AsyncSessionLocal() as session:
            session.add(ServiceAuditLog(
                service_id=service_id,
                user_id=user_id,
                action=action,
                success=success,
                error_message=error_message,
                ip_address=ip_address,
                user_agent=user_agent,
            ))
            await session.commit()
    except SQLAlchemyError:
        logger.error(
            "Failed to write service audit log",
            extra={"service_id": service_id, "user_id": user_id, "action": action},
            exc_info=True,
        )
