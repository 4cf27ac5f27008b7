"""ServiceRegistry and ServiceAuditLog models"""
from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from afauth.database import Base
from afauth.models.types import UTCDateTime, generate_uuid_string, utcnow


class ServiceRegistry(Base):
    """A downstream service allowed to retrieve users' GitHub tokens"""

    __tablename__ = "service_registry"

    id = Column(String(36), primary_key=True, default=generate_uuid_string)
    service_identifier = Column(String(255), unique=True, nullable=False, index=True)
    hashed_api_key = Column(Text, nullable=False)  # bcrypt hash, never plaintext
    allowed_scopes = Column(JSON, default=list, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_used_at = Column(UTCDateTime, nullable=True)
    last_api_key_rotated_at = Column(UTCDateTime, nullable=True)


class ServiceAuditLog(Base):
    """Append-only record of every token-retrieval attempt (no secrets)"""

    __tablename__ = "service_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    success = Column(Boolean, nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)
