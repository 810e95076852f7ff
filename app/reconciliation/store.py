"""Persistence boundary used by the reconciliation jobs."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from app.db.enums import UserRole
from app.db.models import AppUser, ZtNetwork
from app.db.session import SessionScopeFactory, session_scope
from app.reconciliation.enricher import EnrichedMember
from app.repositories.audit_events import AuditEventRepository
from app.repositories.errors import UnknownUserError
from app.repositories.network_members import NetworkMemberRepository
from app.repositories.users import UserRepository
from app.repositories.zt_networks import ZtNetworkRepository


@dataclass(frozen=True, slots=True)
class UserRecord:
    id: uuid.UUID
    username: str
    role: UserRole
    is_active: bool
    expires_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


@dataclass(frozen=True, slots=True)
class NetworkRecord:
    nwid: str
    name: str
    author_id: uuid.UUID


class ReconciliationStore(Protocol):
    def find_expired_active_users(self, now: datetime) -> list[UserRecord]: ...

    def find_active_users(self) -> list[UserRecord]: ...

    def find_networks_by_owner(self, user_id: uuid.UUID) -> list[NetworkRecord]: ...

    def set_user_active(self, user_id: uuid.UUID, is_active: bool) -> None: ...

    def upsert_member(self, nwid: str, member_id: str, member: EnrichedMember) -> None: ...

    def set_member_authorized(self, nwid: str, member_id: str, authorized: bool) -> bool: ...

    def record_audit_event(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        actor_user_id: uuid.UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None: ...


class SqlReconciliationStore:
    """SQLAlchemy-backed store; every call is its own transaction."""

    def __init__(self, session_scope_factory: SessionScopeFactory = session_scope) -> None:
        self._session_scope = session_scope_factory

    def find_expired_active_users(self, now: datetime) -> list[UserRecord]:
        with self._session_scope() as db_session:
            rows = UserRepository(db_session).list_expired_active(now)
            return [_user_record(row) for row in rows]

    def find_active_users(self) -> list[UserRecord]:
        with self._session_scope() as db_session:
            return [_user_record(row) for row in UserRepository(db_session).list_active()]

    def find_networks_by_owner(self, user_id: uuid.UUID) -> list[NetworkRecord]:
        with self._session_scope() as db_session:
            rows = ZtNetworkRepository(db_session).list_by_author(user_id)
            return [_network_record(row) for row in rows]

    def set_user_active(self, user_id: uuid.UUID, is_active: bool) -> None:
        with self._session_scope() as db_session:
            if UserRepository(db_session).set_active(user_id, is_active) is None:
                raise UnknownUserError(user_id)

    def upsert_member(self, nwid: str, member_id: str, member: EnrichedMember) -> None:
        with self._session_scope() as db_session:
            NetworkMemberRepository(db_session).upsert_enriched(nwid, member_id, member)

    def set_member_authorized(self, nwid: str, member_id: str, authorized: bool) -> bool:
        with self._session_scope() as db_session:
            return NetworkMemberRepository(db_session).set_authorized(nwid, member_id, authorized)

    def record_audit_event(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        actor_user_id: uuid.UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        with self._session_scope() as db_session:
            AuditEventRepository(db_session).create_event(
                action=action,
                target_type=target_type,
                target_id=target_id,
                actor_user_id=actor_user_id,
                metadata=metadata,
            )


def _user_record(row: AppUser) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        role=row.role,
        is_active=row.is_active,
        expires_at=row.expires_at,
    )


def _network_record(row: ZtNetwork) -> NetworkRecord:
    return NetworkRecord(nwid=row.nwid, name=row.name, author_id=row.author_id)
