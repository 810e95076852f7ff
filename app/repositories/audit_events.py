"""Repositories for audit events."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import AuditEvent

USER_TARGET_TYPE = "app_user"


class AuditEventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_event(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        actor_user_id: uuid.UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor_user_id=actor_user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            event_metadata=dict(metadata or {}),
        )
        self._session.add(event)
        self._session.flush()
        return event

    def create_user_event(
        self,
        *,
        action: str,
        user_id: uuid.UUID,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        return self.create_event(
            action=action,
            target_type=USER_TARGET_TYPE,
            target_id=str(user_id),
            metadata=metadata,
        )

    def list_events(
        self,
        *,
        action: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
    ) -> list[AuditEvent]:
        statement = select(AuditEvent).order_by(AuditEvent.created_at.asc())
        if action is not None:
            statement = statement.where(AuditEvent.action == action)
        if target_type is not None:
            statement = statement.where(AuditEvent.target_type == target_type)
        if target_id is not None:
            statement = statement.where(AuditEvent.target_id == target_id)
        return list(self._session.execute(statement).scalars())
