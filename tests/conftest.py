from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import get_settings
from app.db import models as _models  # noqa: F401
from app.db.base import Base
from app.db.enums import UserRole
from app.db.models import AppUser, ZtNetwork
from app.db.session import SessionScopeFactory, make_session_scope


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def db_engine() -> Generator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def session_scope_factory(session_factory: sessionmaker[Session]) -> SessionScopeFactory:
    return make_session_scope(session_factory)


@pytest.fixture()
def seed_user(session_factory: sessionmaker[Session]) -> Callable[..., uuid.UUID]:
    def _seed(
        username: str,
        *,
        role: UserRole = UserRole.USER,
        is_active: bool = True,
        expires_at: datetime | None = None,
        networks: tuple[str, ...] = (),
    ) -> uuid.UUID:
        with session_factory() as session:
            user = AppUser(
                username=username,
                role=role,
                is_active=is_active,
                expires_at=expires_at,
            )
            session.add(user)
            session.flush()
            for nwid in networks:
                session.add(ZtNetwork(nwid=nwid, name=f"net-{nwid[-4:]}", author_id=user.id))
            session.commit()
            return user.id

    return _seed
