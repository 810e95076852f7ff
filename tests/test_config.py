from __future__ import annotations

from pathlib import Path

import pytest

from app.config import (
    DEFAULT_EXPIRY_SWEEP_CRON,
    DEFAULT_PEER_SYNC_CRON,
    DEFAULT_TIMEZONE,
    AppSettings,
    get_settings,
    split_cron_expression,
)


def _write_runtime_config(tmp_path: Path, content: str) -> Path:
    runtime_config = tmp_path / "runtime-config.yaml"
    runtime_config.write_text(content, encoding="utf-8")
    return runtime_config


def test_from_yaml_defaults_when_runtime_config_missing(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("ZT_CONTROLLER_AUTH_TOKEN", raising=False)

    settings = AppSettings.from_yaml(str(tmp_path / "missing-runtime-config.yaml"))

    assert settings.app_env == "development"
    assert settings.log_level == "INFO"
    assert settings.zt_provider == "self_hosted_controller"
    assert settings.zt_controller_auth_token == ""
    assert settings.scheduler_enabled is True
    assert settings.reconciliation_timezone == DEFAULT_TIMEZONE
    assert settings.expiry_sweep_cron == DEFAULT_EXPIRY_SWEEP_CRON
    assert settings.peer_sync_cron == DEFAULT_PEER_SYNC_CRON
    assert settings.peer_sync_max_workers == 1


def test_from_yaml_reads_controller_settings(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ZT_CONTROLLER_AUTH_TOKEN", "controller-secret")
    runtime_config = _write_runtime_config(
        tmp_path,
        """
redis:
  url: redis://example:6379/9
zerotier:
  provider: Central
  http_timeout_seconds: 0.2
  central:
    base_url: https://central.example/api
    api_token: central-secret
  self_hosted_controller:
    base_url: http://controller.example:9993/controller
    auth_token_file: /run/secrets/zt_controller_token
""",
    )

    settings = AppSettings.from_yaml(str(runtime_config))

    assert settings.runtime_config_path == str(runtime_config)
    assert settings.redis_url == "redis://example:6379/9"
    assert settings.zt_provider == "central"
    assert settings.zt_http_timeout_seconds == 1.0
    assert settings.zt_central_base_url == "https://central.example/api"
    assert settings.zt_central_api_token == "central-secret"
    assert settings.zt_controller_base_url == "http://controller.example:9993/controller"
    assert settings.zt_controller_auth_token == "controller-secret"
    assert settings.zt_controller_auth_token_file == "/run/secrets/zt_controller_token"


def test_from_yaml_reads_reconciliation_settings(tmp_path: Path) -> None:
    runtime_config = _write_runtime_config(
        tmp_path,
        """
app:
  env: Production
  log_level: debug
reconciliation:
  scheduler_enabled: false
  timezone: Europe/Berlin
  expiry_sweep:
    cron: "0   15 3 * * *"
  peer_sync:
    cron: "*/30 * * * * *"
    max_workers: 0
""",
    )

    settings = AppSettings.from_yaml(str(runtime_config))

    assert settings.app_env == "production"
    assert settings.log_level == "DEBUG"
    assert settings.scheduler_enabled is False
    assert settings.reconciliation_timezone == "Europe/Berlin"
    assert settings.expiry_sweep_cron == "0 15 3 * * *"
    assert settings.peer_sync_cron == "*/30 * * * * *"
    assert settings.peer_sync_max_workers == 1


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("reconciliation:\n  timezone: Nowhere/Special\n", "unknown timezone"),
        ("reconciliation:\n  expiry_sweep:\n    cron: '0 0 * * *'\n", "6 fields"),
        ("app:\n  log_level: chatty\n", "app.log_level"),
        ("reconciliation:\n  peer_sync:\n    cron: '0 99 * * * *'\n", "invalid cron expression"),
        ("reconciliation:\n  expiry_sweep:\n    cron: '0 0 0 * * 8'\n", "day_of_week"),
    ],
)
def test_from_yaml_rejects_invalid_values(tmp_path: Path, content: str, message: str) -> None:
    runtime_config = _write_runtime_config(tmp_path, content)

    with pytest.raises(ValueError, match=message):
        AppSettings.from_yaml(str(runtime_config))


def test_from_yaml_accepts_sunday_as_seven(tmp_path: Path) -> None:
    runtime_config = _write_runtime_config(
        tmp_path,
        "reconciliation:\n  timezone: UTC\n  expiry_sweep:\n    cron: '0 0 3 * * 7'\n",
    )

    settings = AppSettings.from_yaml(str(runtime_config))

    assert settings.expiry_sweep_cron == "0 0 3 * * 7"


def test_split_cron_expression_maps_fields_in_order() -> None:
    assert split_cron_expression("0 */5 * * * mon-fri") == {
        "second": "0",
        "minute": "*/5",
        "hour": "*",
        "day": "*",
        "month": "*",
        "day_of_week": "mon-fri",
    }


def test_get_settings_honours_runtime_config_path_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    runtime_config = _write_runtime_config(
        tmp_path,
        "zerotier:\n  provider: central\n",
    )
    monkeypatch.setenv("RUNTIME_CONFIG_PATH", str(runtime_config))
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.runtime_config_path == str(runtime_config)
    assert settings.zt_provider == "central"
