"""Controller client selection based on runtime settings."""

from __future__ import annotations

from pathlib import Path

from app.config import AppSettings
from app.controller.base import ControllerClient
from app.controller.central import ZeroTierCentralClient
from app.controller.self_hosted_controller import ZeroTierSelfHostedControllerClient

DEFAULT_CONTROLLER_TOKEN_FILE = "/var/lib/zerotier-one/authtoken.secret"


def create_controller_client(settings: AppSettings) -> ControllerClient:
    provider_mode = settings.zt_provider.strip().lower()
    if provider_mode == "central":
        token = settings.zt_central_api_token.strip()
        if not token:
            raise ValueError("ZT_CENTRAL_API_TOKEN is required when ZT_PROVIDER=central")
        base_url = settings.zt_central_base_url.strip()
        if not base_url:
            raise ValueError("ZT_CENTRAL_BASE_URL is required when ZT_PROVIDER=central")
        return ZeroTierCentralClient(
            base_url=base_url,
            api_token=token,
            timeout_seconds=settings.zt_http_timeout_seconds,
        )

    if provider_mode == "self_hosted_controller":
        base_url = settings.zt_controller_base_url.strip()
        if not base_url:
            raise ValueError(
                "ZT_CONTROLLER_BASE_URL is required when ZT_PROVIDER=self_hosted_controller"
            )
        return ZeroTierSelfHostedControllerClient(
            base_url=base_url,
            auth_token=resolve_controller_auth_token(settings),
            timeout_seconds=settings.zt_http_timeout_seconds,
        )

    raise ValueError(
        "ZT_PROVIDER must be either 'central' or 'self_hosted_controller' "
        f"(received {settings.zt_provider!r})"
    )


def resolve_controller_auth_token(
    settings: AppSettings,
    *,
    default_token_file: str = DEFAULT_CONTROLLER_TOKEN_FILE,
) -> str:
    """Token precedence: configured file, environment, then the local node's token file."""
    configured_file = settings.zt_controller_auth_token_file.strip()
    if configured_file:
        token = _read_token_file(configured_file)
        if token is None:
            raise ValueError(f"controller auth token file is missing or empty: {configured_file}")
        return token

    env_token = settings.zt_controller_auth_token.strip()
    if env_token:
        return env_token

    fallback = _read_token_file(default_token_file)
    if fallback is not None:
        return fallback
    raise ValueError(
        "ZT_CONTROLLER_AUTH_TOKEN is required when ZT_PROVIDER=self_hosted_controller"
    )


def _read_token_file(token_file: str) -> str | None:
    try:
        token = Path(token_file).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return token or None
