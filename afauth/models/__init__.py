"""Database models"""
from afauth.models.key_rotation import KeyRotation
from afauth.models.revoked_token import RevokedToken
from afauth.models.service_registry import ServiceAuditLog, ServiceRegistry
from afauth.models.user import User

__all__ = ["KeyRotation", "RevokedToken", "ServiceAuditLog", "ServiceRegistry", "User"]
