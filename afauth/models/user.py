"""User model"""
from sqlalchemy import BigInteger, Boolean, Column, String, Text

from afauth.database import Base
from afauth.models.types import UTCDateTime, generate_uuid_string, utcnow


class User(Base):
    """A GitHub identity that completed the OAuth flow at least once.

    GitHub tokens are stored encrypted (see ``afauth.utils.encryption``).
    ``is_whitelisted`` is the single switch gating JWT issuance and token
    retrieval; it is flipped by administrators and by user-level revocation.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid_string)
    github_user_id = Column(BigInteger, unique=True, nullable=False, index=True)
    github_access_token = Column(Text, nullable=True)
    github_refresh_token = Column(Text, nullable=True)
    github_token_expires_at = Column(UTCDateTime, nullable=True)
    is_whitelisted = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<User {self.id} github={self.github_user_id}>"
