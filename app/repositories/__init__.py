"""Repository layer exports."""

from app.repositories.audit_events import AuditEventRepository
from app.repositories.errors import RepositoryError, UnknownUserError
from app.repositories.network_members import NetworkMemberRepository
from app.repositories.users import UserRepository, normalize_username
from app.repositories.zt_networks import ZtNetworkRepository

__all__ = [
    "AuditEventRepository",
    "NetworkMemberRepository",
    "RepositoryError",
    "UnknownUserError",
    "UserRepository",
    "ZtNetworkRepository",
    "normalize_username",
]
