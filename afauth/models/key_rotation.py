"""KeyRotation model"""
from sqlalchemy import Boolean, Column, Integer, String, Text

from afauth.database import Base
from afauth.models.types import UTCDateTime, generate_uuid_string, utcnow


class KeyRotation(Base):
    """Rotation history of one key, upserted on each rotation event"""

    __tablename__ = "key_rotations"

    id = Column(String(36), primary_key=True, default=generate_uuid_string)
    key_identifier = Column(String(255), unique=True, nullable=False, index=True)
    key_type = Column(String(50), nullable=False)
    last_rotated_at = Column(UTCDateTime, nullable=False)
    next_rotation_due = Column(UTCDateTime, nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    rotation_interval_days = Column(Integer, nullable=True)
    key_metadata = Column("metadata", Text, nullable=True)  # Column name is 'metadata', attribute is 'key_metadata'
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
