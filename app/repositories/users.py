"""Repositories for app user persistence."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import UserRole
from app.db.models import AppUser


def normalize_username(username: str) -> str:
    return username.strip().lower()


class UserRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, user_id: uuid.UUID) -> AppUser | None:
        return self._session.get(AppUser, user_id)

    def get_by_username(self, username: str) -> AppUser | None:
        statement = select(AppUser).where(AppUser.username == normalize_username(username))
        return self._session.execute(statement).scalar_one_or_none()

    def list_expired_active(self, now: datetime) -> list[AppUser]:
        statement = (
            select(AppUser)
            .where(
                AppUser.expires_at.is_not(None),
                AppUser.expires_at < now,
                AppUser.is_active.is_(True),
                AppUser.role != UserRole.ADMIN,
            )
            .order_by(AppUser.username.asc())
        )
        return list(self._session.execute(statement).scalars())

    def list_active(self) -> list[AppUser]:
        statement = (
            select(AppUser)
            .where(AppUser.is_active.is_(True))
            .order_by(AppUser.username.asc())
        )
        return list(self._session.execute(statement).scalars())

    def set_active(self, user_id: uuid.UUID, is_active: bool) -> AppUser | None:
        user = self.get_by_id(user_id)
        if user is None:
            return None
        if user.is_active != is_active:
            user.is_active = is_active
            self._session.flush()
        return user

    def upsert(
        self,
        *,
        username: str,
        email: str | None = None,
        role: UserRole | None = None,
        expires_at: datetime | None = None,
    ) -> AppUser:
        normalized_username = normalize_username(username)
        existing = self.get_by_username(normalized_username)
        if existing is None:
            existing = AppUser(
                username=normalized_username,
                email=email,
                role=role or UserRole.USER,
                is_active=True,
                expires_at=expires_at,
            )
            self._session.add(existing)
        else:
            if email is not None:
                existing.email = email
            if role is not None:
                existing.role = role
            if expires_at is not None:
                existing.expires_at = expires_at

        self._session.flush()
        return existing

    def set_expiry(
        self,
        user: AppUser,
        *,
        expires_at: datetime | None,
        reactivate: bool = False,
    ) -> AppUser:
        user.expires_at = expires_at
        if reactivate:
            user.is_active = True
        self._session.flush()
        return user
