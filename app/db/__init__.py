"""Database layer exports."""

from app.db.base import Base
from app.db.enums import ConnectionStatus, UserRole
from app.db.models import AppUser, AuditEvent, NetworkMember, ZtNetwork

__all__ = [
    "AppUser",
    "AuditEvent",
    "Base",
    "ConnectionStatus",
    "NetworkMember",
    "UserRole",
    "ZtNetwork",
]
