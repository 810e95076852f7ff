"""Merge controller member records with their peer connectivity snapshots.

Everything here is a pure function of its inputs: no clock reads, no I/O.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.controller.base import MemberRecord, PeerPath, PeerSnapshot, datetime_from_millis
from app.db.enums import ONLINE_CONNECTION_STATUSES, ConnectionStatus


@dataclass(frozen=True, slots=True)
class EnrichedMember:
    nwid: str
    member_id: str
    authorized: bool
    ip_assignments: tuple[str, ...]
    name: str | None
    metadata: Mapping[str, Any]
    conn_status: ConnectionStatus
    physical_address: str | None = None
    latency_ms: int | None = None
    client_version: str | None = None
    last_seen: datetime | None = None
    peer: PeerSnapshot | None = None

    @property
    def online(self) -> bool:
        return self.conn_status in ONLINE_CONNECTION_STATUSES


def enrich_members(
    nwid: str,
    members: Sequence[MemberRecord],
    peers: Iterable[PeerSnapshot],
) -> list[EnrichedMember]:
    peers_by_address: dict[str, PeerSnapshot] = {}
    for peer in peers:
        # First snapshot wins on duplicate addresses.
        peers_by_address.setdefault(peer.address.lower(), peer)

    return [
        _enrich_member(nwid, member, peers_by_address.get(member.member_id.lower()))
        for member in members
    ]


def _enrich_member(nwid: str, member: MemberRecord, peer: PeerSnapshot | None) -> EnrichedMember:
    if peer is None:
        return EnrichedMember(
            nwid=nwid,
            member_id=member.member_id,
            authorized=member.authorized,
            ip_assignments=member.ip_assignments,
            name=member.name,
            metadata=member.metadata,
            conn_status=ConnectionStatus.OFFLINE,
            client_version=_metadata_version(member.metadata),
            last_seen=member.last_seen,
        )

    path = select_preferred_path(peer.paths)
    physical_address = physical_host(path.address) if path is not None else None
    return EnrichedMember(
        nwid=nwid,
        member_id=member.member_id,
        authorized=member.authorized,
        ip_assignments=member.ip_assignments,
        name=member.name,
        metadata=member.metadata,
        conn_status=determine_connection_status(peer, physical_address),
        physical_address=physical_address,
        latency_ms=_usable_latency(peer.latency_ms),
        client_version=peer.version or _metadata_version(member.metadata),
        last_seen=_latest_receive(peer.paths) or member.last_seen,
        peer=peer,
    )


def select_preferred_path(paths: Sequence[PeerPath]) -> PeerPath | None:
    active_paths = [path for path in paths if path.active]
    for path in active_paths:
        if path.preferred:
            return path
    return active_paths[0] if active_paths else None


def physical_host(path_address: str) -> str:
    """Strip the ``/port`` suffix ZeroTier appends to path addresses."""
    host, separator, port = path_address.rpartition("/")
    if separator and port.isdigit():
        return host
    return path_address


def determine_connection_status(
    peer: PeerSnapshot | None,
    physical_address: str | None,
) -> ConnectionStatus:
    if peer is None:
        return ConnectionStatus.OFFLINE
    if physical_address is None or (peer.latency_ms is not None and peer.latency_ms < 0):
        return ConnectionStatus.RELAYED
    try:
        parsed = ipaddress.ip_address(physical_address)
    except ValueError:
        return ConnectionStatus.DIRECT_WAN
    if parsed.is_private or parsed.is_loopback or parsed.is_link_local:
        return ConnectionStatus.DIRECT_LAN
    return ConnectionStatus.DIRECT_WAN


def _latest_receive(paths: Sequence[PeerPath]) -> datetime | None:
    receive_times = [path.last_receive_ms for path in paths if path.last_receive_ms]
    if not receive_times:
        return None
    return datetime_from_millis(max(receive_times))


def _usable_latency(latency_ms: int | None) -> int | None:
    if latency_ms is None or latency_ms < 0:
        return None
    return latency_ms


def _metadata_version(metadata: Mapping[str, Any]) -> str | None:
    value = metadata.get("clientVersion")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
