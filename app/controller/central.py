"""ZeroTier Central controller adapter."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
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
    datetime_from_millis,
)

HTTPClientFactory = Callable[..., httpx.Client]
MEMBER_ID_LENGTH = 10
HEX_CHARS = frozenset("0123456789abcdef")
DEFAULT_ONLINE_WINDOW = timedelta(minutes=5)

logger = logging.getLogger(__name__)


class ZeroTierCentralClient:
    client_name = "central"

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str,
        timeout_seconds: float = 10.0,
        online_window: timedelta = DEFAULT_ONLINE_WINDOW,
        http_client_factory: HTTPClientFactory = httpx.Client,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout_seconds = timeout_seconds
        self._online_window = online_window
        self._http_client_factory = http_client_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    def get_network_detail(
        self,
        nwid: str,
        *,
        context: RequestContext,
    ) -> NetworkDetail | None:
        network_response = self._request("GET", f"/network/{nwid}", context=context)
        if network_response.status_code == 404:
            logger.info("central network not found nwid=%s user_id=%s", nwid, context.user_id)
            return None
        self._raise_for_status(
            network_response,
            default_message=f"failed to read ZeroTier Central network nwid={nwid}",
        )
        network_body = _parse_json_object(network_response)
        network_config = network_body.get("config")
        network_name = None
        if isinstance(network_config, dict):
            network_name = _extract_optional_str(network_config, "name")

        members_response = self._request("GET", f"/network/{nwid}/member", context=context)
        if members_response.status_code == 404:
            return None
        self._raise_for_status(
            members_response,
            default_message=f"failed to list ZeroTier Central members nwid={nwid}",
        )
        payload = _parse_json(members_response)
        if not isinstance(payload, list):
            logger.info(
                "central member listing has no member collection nwid=%s user_id=%s",
                nwid,
                context.user_id,
            )
            return None

        members: list[MemberRecord] = []
        for item in payload:
            if not isinstance(item, dict):
                raise ControllerRequestError(
                    f"central member entry must be an object nwid={nwid}",
                    status_code=members_response.status_code,
                )
            members.append(_member_from_central_payload(nwid, item))
        return NetworkDetail(nwid=nwid, name=network_name, members=tuple(members))

    def get_peers(
        self,
        members: Sequence[MemberRecord],
        *,
        context: RequestContext,
    ) -> list[PeerSnapshot]:
        # Central reports connectivity inline with the member listing.
        now = self._clock()
        peers: list[PeerSnapshot] = []
        for member in members:
            last_seen = member.last_seen
            physical_address = _extract_optional_str(member.metadata, "physicalAddress")
            if last_seen is None or physical_address is None:
                continue
            if now - last_seen > self._online_window:
                continue
            peers.append(
                PeerSnapshot(
                    address=member.member_id,
                    version=_extract_optional_str(member.metadata, "clientVersion"),
                    paths=(
                        PeerPath(
                            address=physical_address,
                            active=True,
                            preferred=True,
                            last_receive_ms=int(last_seen.timestamp() * 1000),
                        ),
                    ),
                )
            )
        return peers

    def set_authorized(
        self,
        member_id: str,
        nwid: str,
        authorized: bool,
        *,
        context: RequestContext,
    ) -> bool:
        response = self._request(
            "POST",
            f"/network/{nwid}/member/{member_id}",
            context=context,
            json_body={"config": {"authorized": authorized}},
        )
        if response.status_code == 404:
            raise ControllerNotFoundError(
                f"central network/member not found for nwid={nwid} member_id={member_id}",
                status_code=response.status_code,
            )
        self._raise_for_status(
            response,
            default_message=(
                f"failed to update ZeroTier Central member nwid={nwid} member_id={member_id} "
                f"user_id={context.user_id}"
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
    ) -> httpx.Response:
        logger.debug("central %s %s user_id=%s", method, path, context.user_id)
        with self._http_client_factory(
            base_url=self._base_url,
            headers={"Authorization": f"token {self._api_token}"},
            timeout=self._timeout_seconds,
        ) as client:
            try:
                return client.request(method, path, json=json_body)
            except httpx.HTTPError as exc:
                raise ControllerRequestError(f"central request failed: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response, *, default_message: str) -> None:
        if response.status_code < 400:
            return

        status_code = response.status_code
        if status_code in {401, 403}:
            raise ControllerAuthError(
                f"central authentication failed with status={status_code}",
                status_code=status_code,
            )

        response_text = response.text.strip()
        detail = f"{default_message}; status={status_code}"
        if response_text:
            detail = f"{detail}; body={response_text[:240]}"
        raise ControllerRequestError(detail, status_code=status_code)


def _member_from_central_payload(nwid: str, payload: dict[str, Any]) -> MemberRecord:
    member_id = _extract_member_id(payload, keys=("nodeId", "address"))
    config = payload.get("config")
    config_payload = config if isinstance(config, dict) else {}
    return MemberRecord(
        member_id=member_id,
        nwid=nwid,
        authorized=_extract_is_authorized(payload, default=False),
        ip_assignments=_extract_assigned_ips(config_payload),
        name=_extract_optional_str(payload, "name"),
        last_seen=datetime_from_millis(payload.get("lastSeen")),
        metadata=dict(payload),
    )


def _parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ControllerRequestError(
            f"controller response was not valid JSON (status={response.status_code})",
            status_code=response.status_code,
        ) from exc


def _parse_json_object(response: httpx.Response) -> dict[str, Any]:
    data = _parse_json(response)
    if not isinstance(data, dict):
        raise ControllerRequestError(
            f"controller response payload must be an object (status={response.status_code})",
            status_code=response.status_code,
        )
    return data


def _extract_member_id(payload: dict[str, Any], *, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = payload.get(key)
        if not isinstance(value, str):
            continue
        normalized = value.strip().lower()
        if len(normalized) == MEMBER_ID_LENGTH and set(normalized) <= HEX_CHARS:
            return normalized
    raise ControllerRequestError(
        f"controller member payload has no valid member id (looked at {', '.join(keys)})"
    )


def _extract_optional_str(payload: Any, key: str) -> str | None:
    if not hasattr(payload, "get"):
        return None
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _extract_is_authorized(payload: dict[str, Any], *, default: bool) -> bool:
    value = payload.get("authorized")
    if isinstance(value, bool):
        return value

    config = payload.get("config")
    if isinstance(config, dict):
        config_authorized = config.get("authorized")
        if isinstance(config_authorized, bool):
            return config_authorized
    return default


def _extract_assigned_ips(payload: dict[str, Any]) -> tuple[str, ...]:
    candidates: Any = payload.get("ipAssignments")
    if not isinstance(candidates, list):
        return ()

    normalized: list[str] = []
    seen: set[str] = set()
    for item in candidates:
        if not isinstance(item, str):
            continue
        value = item.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        normalized.append(value)
    return tuple(normalized)
