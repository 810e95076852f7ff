"""Repositories for reconciled network member rows."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.db.models import NetworkMember
from app.reconciliation.enricher import EnrichedMember


class NetworkMemberRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, nwid: str, member_id: str) -> NetworkMember | None:
        return self._session.get(NetworkMember, {"id": member_id, "nwid": nwid})

    def upsert_enriched(self, nwid: str, member_id: str, member: EnrichedMember) -> NetworkMember:
        """Write controller-owned fields; leave store-owned fields alone.

        ``name`` is only seeded from the controller while the stored value is empty,
        and ``last_seen`` only ever moves forward.
        """
        existing = self.get(nwid, member_id)
        if existing is None:
            existing = NetworkMember(id=member_id, nwid=nwid, is_stashed=False)
            self._session.add(existing)

        if not existing.name and member.name:
            existing.name = member.name
        existing.authorized = member.authorized
        existing.address = member_id
        existing.ip_assignments = list(member.ip_assignments)
        existing.controller_metadata = dict(member.metadata)
        existing.online = member.online
        existing.conn_status = member.conn_status
        existing.physical_address = member.physical_address
        existing.latency_ms = member.latency_ms
        existing.client_version = member.client_version
        if member.last_seen is not None and _is_newer(member.last_seen, existing.last_seen):
            existing.last_seen = member.last_seen

        self._session.flush()
        return existing

    def set_authorized(self, nwid: str, member_id: str, authorized: bool) -> bool:
        existing = self.get(nwid, member_id)
        if existing is None:
            return False
        if existing.authorized != authorized:
            existing.authorized = authorized
            self._session.flush()
        return True


def _is_newer(candidate: datetime, current: datetime | None) -> bool:
    if current is None:
        return True
    return _as_utc(candidate) > _as_utc(current)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
