"""Controller client interface and normalized controller records."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Identity on whose behalf a controller call is made."""

    user_id: uuid.UUID


@dataclass(frozen=True, slots=True)
class MemberRecord:
    member_id: str
    nwid: str
    authorized: bool
    ip_assignments: tuple[str, ...] = ()
    name: str | None = None
    last_seen: datetime | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PeerPath:
    address: str
    active: bool
    preferred: bool
    last_receive_ms: int | None = None


@dataclass(frozen=True, slots=True)
class PeerSnapshot:
    address: str
    latency_ms: int | None = None
    role: str | None = None
    version: str | None = None
    paths: tuple[PeerPath, ...] = ()


@dataclass(frozen=True, slots=True)
class NetworkDetail:
    nwid: str
    name: str | None
    members: tuple[MemberRecord, ...]


def datetime_from_millis(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, tz=UTC)


class ControllerClient(Protocol):
    client_name: str

    def get_network_detail(
        self,
        nwid: str,
        *,
        context: RequestContext,
    ) -> NetworkDetail | None:
        """Return the network and its members, or None when there is nothing usable."""

    def get_peers(
        self,
        members: Sequence[MemberRecord],
        *,
        context: RequestContext,
    ) -> list[PeerSnapshot]:
        """Resolve connectivity for all ``members`` in at most one round-trip."""

    def set_authorized(
        self,
        member_id: str,
        nwid: str,
        authorized: bool,
        *,
        context: RequestContext,
    ) -> bool:
        """Push an authorization flag and return the state reported back."""


class ControllerClientError(Exception):
    """Base controller exception for deterministic failure handling."""

    error_code = "controller_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ControllerAuthError(ControllerClientError):
    error_code = "controller_auth_error"


class ControllerNotFoundError(ControllerClientError):
    error_code = "controller_not_found"


class ControllerRequestError(ControllerClientError):
    error_code = "controller_request_error"
