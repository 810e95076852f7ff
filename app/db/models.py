"""SQLAlchemy ORM models for users, networks and reconciled members."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import ConnectionStatus, UserRole

USER_ROLE_ENUM = Enum(
    UserRole,
    name="user_role",
    values_callable=lambda enum_cls: [role.value for role in enum_cls],
)
CONNECTION_STATUS_ENUM = Enum(
    ConnectionStatus,
    name="connection_status",
    values_callable=lambda enum_cls: [status.value for status in enum_cls],
)
JSON_DOCUMENT_TYPE = JSONB().with_variant(JSON(), "sqlite")  # type: ignore[no-untyped-call]


class AppUser(Base):
    __tablename__ = "app_user"
    __table_args__ = (Index("idx_app_user_active_expires_at", "is_active", "expires_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(Text)
    role: Mapped[UserRole] = mapped_column(
        USER_ROLE_ENUM,
        nullable=False,
        default=UserRole.USER,
        server_default=text("'user'"),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    networks: Mapped[list[ZtNetwork]] = relationship(back_populates="author")
    audit_events: Mapped[list[AuditEvent]] = relationship(back_populates="actor_user")


class ZtNetwork(Base):
    __tablename__ = "zt_network"
    __table_args__ = (
        CheckConstraint("length(nwid) = 16", name="zt_network_nwid_len"),
        Index("idx_zt_network_author_id", "author_id"),
    )

    nwid: Mapped[str] = mapped_column(String(16), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    author_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("app_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    author: Mapped[AppUser] = relationship(back_populates="networks")
    members: Mapped[list[NetworkMember]] = relationship(
        back_populates="network",
        cascade="all, delete-orphan",
    )


class NetworkMember(Base):
    __tablename__ = "network_member"
    __table_args__ = (CheckConstraint("length(id) = 10", name="network_member_id_len"),)

    id: Mapped[str] = mapped_column(String(10), primary_key=True)
    nwid: Mapped[str] = mapped_column(
        String(16),
        ForeignKey("zt_network.nwid", ondelete="CASCADE"),
        primary_key=True,
    )
    name: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    is_stashed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    authorized: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    address: Mapped[str | None] = mapped_column(String(10))
    ip_assignments: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    controller_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSON_DOCUMENT_TYPE,
        nullable=False,
        default=dict,
    )
    online: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    conn_status: Mapped[ConnectionStatus] = mapped_column(
        CONNECTION_STATUS_ENUM,
        nullable=False,
        default=ConnectionStatus.OFFLINE,
        server_default=text("'offline'"),
    )
    physical_address: Mapped[str | None] = mapped_column(Text)
    latency_ms: Mapped[int | None] = mapped_column(Integer)
    client_version: Mapped[str | None] = mapped_column(Text)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    network: Mapped[ZtNetwork] = relationship(back_populates="members")


class AuditEvent(Base):
    __tablename__ = "audit_event"
    __table_args__ = (Index("idx_audit_event_created_at", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("app_user.id", ondelete="SET NULL"),
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    target_type: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON_DOCUMENT_TYPE,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    actor_user: Mapped[AppUser | None] = relationship(back_populates="audit_events")
