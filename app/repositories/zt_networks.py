"""Repositories for ZeroTier network rows."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import ZtNetwork


class ZtNetworkRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_by_author(self, author_id: uuid.UUID) -> list[ZtNetwork]:
        statement = (
            select(ZtNetwork)
            .where(ZtNetwork.author_id == author_id)
            .order_by(ZtNetwork.nwid.asc())
        )
        return list(self._session.execute(statement).scalars())
