"""Self-hosted ZeroTier controller adapter."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

import httpx

from app.controller.base import (
    ControllerAuthError,
    ControllerNotFoundError,
    ControllerRequestError,
    MemberRecord,
    NetworkDetail,
    PeerPath,
    PeerSnapshot,
    RequestContext,
)
from app.controller.central import (
    _extract_assigned_ips,
    _extract_is_authorized,
    _extract_member_id,
    _extract_optional_str,
    _parse_json,
    _parse_json_object,
)

HTTPClientFactory = Callable[..., httpx.Client]

logger = logging.getLogger(__name__)


class ZeroTierSelfHostedControllerClient:
    client_name = "self_hosted_controller"

    def __init__(
        self,
        *,
        base_url: str,
        auth_token: str,
        timeout_seconds: float = 10.0,
        http_client_factory: HTTPClientFactory = httpx.Client,
    ) -> None:
        self._controller_base_url = base_url.rstrip("/")
        self._service_base_url = self._controller_base_url.removesuffix("/controller")
        self._auth_token = auth_token
        self._timeout_seconds = timeout_seconds
        self._http_client_factory = http_client_factory

    def get_network_detail(
        self,
        nwid: str,
        *,
        context: RequestContext,
    ) -> NetworkDetail | None:
        network_response = self._request("GET", f"/network/{nwid}", context=context)
        if network_response.status_code == 404:
            logger.info("controller network not found nwid=%s user_id=%s", nwid, context.user_id)
            return None
        self._raise_for_status(
            network_response,
            default_message=f"failed to read self-hosted controller network nwid={nwid}",
        )
        network_body = _parse_json_object(network_response)

        index_response = self._request("GET", f"/network/{nwid}/member", context=context)
        if index_response.status_code == 404:
            return None
        self._raise_for_status(
            index_response,
            default_message=f"failed to list self-hosted controller members nwid={nwid}",
        )
        member_ids = _member_ids_from_index(_parse_json(index_response))
        if member_ids is None:
            logger.info(
                "controller member index has no member collection nwid=%s user_id=%s",
                nwid,
                context.user_id,
            )
            return None

        members: list[MemberRecord] = []
        for member_id in member_ids:
            member_response = self._request(
                "GET",
                f"/network/{nwid}/member/{member_id}",
                context=context,
            )
            if member_response.status_code == 404:
                # Deleted between the index read and the detail read.
                continue
            self._raise_for_status(
                member_response,
                default_message=(
                    f"failed to read self-hosted controller member nwid={nwid} "
                    f"member_id={member_id}"
                ),
            )
            members.append(
                _member_from_controller_payload(nwid, _parse_json_object(member_response))
            )

        return NetworkDetail(
            nwid=nwid,
            name=_extract_optional_str(network_body, "name"),
            members=tuple(members),
        )

    def get_peers(
        self,
        members: Sequence[MemberRecord],
        *,
        context: RequestContext,
    ) -> list[PeerSnapshot]:
        wanted = {member.member_id for member in members}
        if not wanted:
            return []

        response = self._request(
            "GET",
            "/peer",
            context=context,
            base_url=self._service_base_url,
        )
        self._raise_for_status(response, default_message="failed to list controller peers")
        payload = _parse_json(response)
        if not isinstance(payload, list):
            raise ControllerRequestError(
                f"controller peer listing must be an array (status={response.status_code})",
                status_code=response.status_code,
            )

        peers: list[PeerSnapshot] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            address = _extract_optional_str(item, "address")
            if address is None or address.lower() not in wanted:
                continue
            peers.append(_peer_from_payload(address.lower(), item))
        return peers

    def set_authorized(
        self,
        member_id: str,
        nwid: str,
        authorized: bool,
        *,
        context: RequestContext,
    ) -> bool:
        payload = {"authorized": authorized}
        response = self._request(
            "POST",
            f"/network/{nwid}/member/{member_id}",
            context=context,
            json_body=payload,
        )
        if response.status_code == 405:
            response = self._request(
                "PUT",
                f"/network/{nwid}/member/{member_id}",
                context=context,
                json_body=payload,
            )
        if response.status_code == 404:
            raise ControllerNotFoundError(
                (
                    "self-hosted controller network/member not found for "
                    f"nwid={nwid} member_id={member_id}"
                ),
                status_code=response.status_code,
            )
        self._raise_for_status(
            response,
            default_message=(
                "failed to update self-hosted controller member "
                f"nwid={nwid} member_id={member_id} user_id={context.user_id}"
            ),
        )
        return _extract_is_authorized(_parse_json_object(response), default=authorized)

    def _request(
        self,
        method: str,
        path: str,
        *,
        context: RequestContext,
        json_body: dict[str, Any] | None = None,
        base_url: str | None = None,
    ) -> httpx.Response:
        logger.debug("self-hosted controller %s %s user_id=%s", method, path, context.user_id)
        with self._http_client_factory(
            base_url=base_url or self._controller_base_url,
            headers={"X-ZT1-Auth": self._auth_token},
            timeout=self._timeout_seconds,
        ) as client:
            try:
                return client.request(method, path, json=json_body)
            except httpx.HTTPError as exc:
                raise ControllerRequestError(
                    f"self-hosted controller request failed: {exc}"
                ) from exc

    def _raise_for_status(self, response: httpx.Response, *, default_message: str) -> None:
        if response.status_code < 400:
            return

        status_code = response.status_code
        if status_code in {401, 403}:
            raise ControllerAuthError(
                f"self-hosted controller authentication failed with status={status_code}",
                status_code=status_code,
            )

        response_text = response.text.strip()
        detail = f"{default_message}; status={status_code}"
        if response_text:
            detail = f"{detail}; body={response_text[:240]}"
        raise ControllerRequestError(detail, status_code=status_code)


def _member_ids_from_index(payload: Any) -> list[str] | None:
    # Controllers answer with {member_id: revision}; some builds return a list.
    if isinstance(payload, dict):
        candidates: list[Any] = list(payload.keys())
    elif isinstance(payload, list):
        candidates = [
            item.get("id") if isinstance(item, dict) else item for item in payload
        ]
    else:
        return None

    member_ids: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        member_id = candidate.strip().lower()
        if not member_id or member_id in seen:
            continue
        seen.add(member_id)
        member_ids.append(member_id)
    return member_ids


def _member_from_controller_payload(nwid: str, payload: dict[str, Any]) -> MemberRecord:
    return MemberRecord(
        member_id=_extract_member_id(payload, keys=("id", "address")),
        nwid=nwid,
        authorized=_extract_is_authorized(payload, default=False),
        ip_assignments=_extract_assigned_ips(payload),
        name=_extract_optional_str(payload, "name"),
        metadata=dict(payload),
    )


def _peer_from_payload(address: str, payload: dict[str, Any]) -> PeerSnapshot:
    latency = payload.get("latency")
    paths_payload = payload.get("paths")
    paths: list[PeerPath] = []
    if isinstance(paths_payload, list):
        for path in paths_payload:
            if not isinstance(path, dict):
                continue
            path_address = _extract_optional_str(path, "address")
            if path_address is None or path.get("expired") is True:
                continue
            last_receive = path.get("lastReceive")
            paths.append(
                PeerPath(
                    address=path_address,
                    active=bool(path.get("active", False)),
                    preferred=bool(path.get("preferred", False)),
                    last_receive_ms=last_receive if isinstance(last_receive, int) else None,
                )
            )
    return PeerSnapshot(
        address=address,
        latency_ms=latency if isinstance(latency, int) and not isinstance(latency, bool) else None,
        role=_extract_optional_str(payload, "role"),
        version=_peer_version(payload),
        paths=tuple(paths),
    )


def _peer_version(payload: dict[str, Any]) -> str | None:
    version = _extract_optional_str(payload, "version")
    if version is not None:
        return version
    parts = [payload.get(key) for key in ("versionMajor", "versionMinor", "versionRev")]
    if all(isinstance(part, int) and part >= 0 for part in parts):
        return ".".join(str(part) for part in parts)
    return None
