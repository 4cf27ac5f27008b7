"""RevokedToken model - jti ledger for JWT revocation"""
from sqlalchemy import Column, Integer, String, Text

from afauth.database import Base
from afauth.models.types import UTCDateTime, utcnow


class RevokedToken(Base):
    """Stores revoked JWT token IDs (jti claims).

    token_expires_at mirrors the token's original exp so rows can be pruned
    once the token would have expired anyway.
    """

    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String(255), unique=True, nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    token_issued_at = Column(UTCDateTime, nullable=False)
    token_expires_at = Column(UTCDateTime, nullable=False, index=True)
    revoked_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)
    revoked_by = Column(String(255), nullable=True)
    reason = Column(Text, nullable=True)
