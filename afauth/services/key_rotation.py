"""Key rotation tracking"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.config import settings
from afauth.database import dialect_insert
from afauth.models.key_rotation import KeyRotation
from afauth.utils.logger import logger

KEY_TYPES = ("jwt_signing", "jwt_verification", "github_token_encryption", "service_api_key", "other")

STANDARD_KEYS = (
    ("jwt_signing_key", "jwt_signing"),
    ("jwt_verification_key", "jwt_verification"),
    ("github_token_encryption_key", "github_token_encryption"),
)

DUE_SOON_DAYS = 30


@dataclass
class KeyRotationStatus:
    key_identifier: str
    key_type: str
    last_rotated_at: datetime
    next_rotation_due: Optional[datetime]
    is_active: bool
    is_overdue: bool
    days_until_due: Optional[int]
    days_since_rotation: int
    rotation_interval_days: Optional[int]


def _by_column(values: dict) -> dict:
    """Key insert values by Column so attribute names differing from column
    names (key_metadata -> metadata) resolve correctly"""
    columns = KeyRotation.__mapper__.columns
    return {columns[name]: value for name, value in values.items()}


def _next_due(last_rotated_at: datetime, interval_days: int) -> Optional[datetime]:
    if interval_days and interval_days > 0:
        return last_rotated_at + timedelta(days=interval_days)
    return None


def _status(record: KeyRotation, now: Optional[datetime] = None) -> KeyRotationStatus:
    now = now or datetime.now(timezone.utc)
    days_since_rotation = math.floor((now - record.last_rotated_at).total_seconds() / 86400)

    days_until_due = None
    is_overdue = False
    if record.next_rotation_due is not None:
        days_until_due = math.floor((record.next_rotation_due - now).total_seconds() / 86400)
        is_overdue = now > record.next_rotation_due

    return KeyRotationStatus(
        key_identifier=record.key_identifier,
        key_type=record.key_type,
        last_rotated_at=record.last_rotated_at,
        next_rotation_due=record.next_rotation_due,
        is_active=record.is_active,
        is_overdue=is_overdue,
        days_until_due=days_until_due,
        days_since_rotation=days_since_rotation,
        rotation_interval_days=record.rotation_interval_days,
    )


async def record_key_rotation(
    db: AsyncSession,
    key_identifier: str,
    key_type: str,
    rotation_interval_days: Optional[int] = None,
    metadata: Optional[str] = None,
) -> KeyRotation:
    """Record that a key was rotated now (single upsert on key_identifier)."""
    if key_type not in KEY_TYPES:
        raise ValueError(f"Unknown key type: {key_type}")

    interval = rotation_interval_days
    if interval is None:
        interval = settings.default_rotation_interval(key_type)

    now = datetime.now(timezone.utc)
    values = {
        "key_type": key_type,
        "last_rotated_at": now,
        "next_rotation_due": _next_due(now, interval),
        "is_active": True,
        "rotation_interval_days": interval,
        "key_metadata": metadata,
        "updated_at": now,
    }
    row = {"key_identifier": key_identifier, "created_at": now, **values}
    stmt = dialect_insert(db, KeyRotation).values(_by_column(row)).on_conflict_do_update(
        index_elements=[KeyRotation.key_identifier],
        set_=_by_column(values),
    )
    await db.execute(stmt)
    await db.commit()

    record = await db.scalar(
        select(KeyRotation)
        .where(KeyRotation.key_identifier == key_identifier)
        .execution_options(populate_existing=True)
    )
    logger.info(
        "Key rotation recorded",
        extra={"key_identifier": key_identifier, "key_type": key_type, "action": "record_key_rotation"},
    )
    return record


async def get_key_rotation_status(db: AsyncSession, key_identifier: str) -> Optional[KeyRotationStatus]:
    record = await db.scalar(select(KeyRotation).where(KeyRotation.key_identifier == key_identifier))
    if record is None:
        return None
    return _status(record)


async def get_all_key_rotation_statuses(db: AsyncSession, active_only: bool = True) -> List[KeyRotationStatus]:
    query = select(KeyRotation).order_by(KeyRotation.key_identifier)
    if active_only:
        query = query.where(KeyRotation.is_active.is_(True))
    now = datetime.now(timezone.utc)
    return [_status(record, now) for record in (await db.scalars(query)).all()]


async def is_key_rotation_overdue(db: AsyncSession, key_identifier: str) -> bool:
    status = await get_key_rotation_status(db, key_identifier)
    return status is not None and status.is_overdue


async def initialize_key_rotation_tracking(db: AsyncSession) -> None:
    """Create records for the standard keys; existing history is left alone."""
    now = datetime.now(timezone.utc)
    for key_identifier, key_type in STANDARD_KEYS:
        interval = settings.default_rotation_interval(key_type)
        stmt = dialect_insert(db, KeyRotation).values(_by_column({
            "key_identifier": key_identifier,
            "key_type": key_type,
            "last_rotated_at": now,
            "next_rotation_due": _next_due(now, interval),
            "is_active": True,
            "rotation_interval_days": interval,
            "key_metadata": "Initialized during deployment",
            "created_at": now,
            "updated_at": now,
        })).on_conflict_do_nothing(index_elements=[KeyRotation.key_identifier])
        await db.execute(stmt)
    await db.commit()
    logger.info("Key rotation tracking initialized")


async def check_and_log_overdue_rotations(db: AsyncSession) -> List[KeyRotationStatus]:
    """Warn about overdue keys and note keys due within 30 days"""
    statuses = await get_all_key_rotation_statuses(db)
    for status in statuses:
        if status.is_overdue:
            logger.warning(
                f"Key rotation overdue by {abs(status.days_until_due)} days",
                extra={"key_identifier": status.key_identifier, "key_type": status.key_type},
            )
        elif status.days_until_due is not None and status.days_until_due <= DUE_SOON_DAYS:
            logger.info(
                f"Key rotation due in {status.days_until_due} days",
                extra={"key_identifier": status.key_identifier, "key_type": status.key_type},
            )
    return statuses
