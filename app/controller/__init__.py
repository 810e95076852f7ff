"""ZeroTier controller clients."""

from app.controller.base import (
    ControllerAuthError,
    ControllerClient,
    ControllerClientError,
    ControllerNotFoundError,
    ControllerRequestError,
    MemberRecord,
    NetworkDetail,
    PeerPath,
    PeerSnapshot,
    RequestContext,
)
from app.controller.central import ZeroTierCentralClient
from app.controller.factory import create_controller_client, resolve_controller_auth_token
from app.controller.self_hosted_controller import ZeroTierSelfHostedControllerClient

__all__ = [
    "ControllerAuthError",
    "ControllerClient",
    "ControllerClientError",
    "ControllerNotFoundError",
    "ControllerRequestError",
    "MemberRecord",
    "NetworkDetail",
    "PeerPath",
    "PeerSnapshot",
    "RequestContext",
    "ZeroTierCentralClient",
    "ZeroTierSelfHostedControllerClient",
    "create_controller_client",
    "resolve_controller_auth_token",
]
