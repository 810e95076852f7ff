"""Application configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

DEFAULT_TIMEZONE = "America/Los_Angeles"
DEFAULT_EXPIRY_SWEEP_CRON = "0 0 0 * * *"
DEFAULT_PEER_SYNC_CRON = "0 */5 * * * *"
CRON_FIELD_NAMES = ("second", "minute", "hour", "day", "month", "day_of_week")
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True, slots=True)
class AppSettings:
    app_env: str
    runtime_config_path: str = "runtime-config.yaml"
    log_level: str = "INFO"
    redis_url: str = "redis://localhost:6379/0"
    zt_provider: str = "self_hosted_controller"
    zt_http_timeout_seconds: float = 10.0
    zt_central_base_url: str = "https://api.zerotier.com/api/v1"
    zt_central_api_token: str = ""
    zt_controller_base_url: str = "http://127.0.0.1:9993/controller"
    zt_controller_auth_token: str = ""
    zt_controller_auth_token_file: str = ""
    scheduler_enabled: bool = True
    reconciliation_timezone: str = DEFAULT_TIMEZONE
    expiry_sweep_cron: str = DEFAULT_EXPIRY_SWEEP_CRON
    peer_sync_cron: str = DEFAULT_PEER_SYNC_CRON
    peer_sync_max_workers: int = 1

    @classmethod
    def from_yaml(cls, runtime_config_path: str = "runtime-config.yaml") -> AppSettings:
        normalized_path = runtime_config_path.strip() or "runtime-config.yaml"
        config = _load_runtime_config(normalized_path)

        app_cfg = cast(dict[str, Any], config.get("app", {}))
        redis_cfg = cast(dict[str, Any], config.get("redis", {}))
        zerotier_cfg = cast(dict[str, Any], config.get("zerotier", {}))
        central_cfg = cast(dict[str, Any], zerotier_cfg.get("central", {}))
        controller_cfg = cast(
            dict[str, Any], zerotier_cfg.get("self_hosted_controller", {})
        )
        reconciliation_cfg = cast(dict[str, Any], config.get("reconciliation", {}))
        expiry_cfg = cast(dict[str, Any], reconciliation_cfg.get("expiry_sweep", {}))
        peer_sync_cfg = cast(dict[str, Any], reconciliation_cfg.get("peer_sync", {}))
        timezone = validate_timezone(str(reconciliation_cfg.get("timezone", DEFAULT_TIMEZONE)))

        return cls(
            app_env=str(app_cfg.get("env", "development")).lower(),
            runtime_config_path=normalized_path,
            log_level=_resolve_log_level(str(app_cfg.get("log_level", "INFO"))),
            redis_url=str(redis_cfg.get("url", "redis://localhost:6379/0")),
            zt_provider=str(zerotier_cfg.get("provider", "self_hosted_controller")).lower(),
            zt_http_timeout_seconds=max(
                1.0,
                float(zerotier_cfg.get("http_timeout_seconds", 10.0)),
            ),
            zt_central_base_url=str(
                central_cfg.get("base_url", "https://api.zerotier.com/api/v1")
            ),
            zt_central_api_token=str(central_cfg.get("api_token", "")),
            zt_controller_base_url=str(
                controller_cfg.get("base_url", "http://127.0.0.1:9993/controller")
            ),
            zt_controller_auth_token=os.environ.get("ZT_CONTROLLER_AUTH_TOKEN", ""),
            zt_controller_auth_token_file=str(controller_cfg.get("auth_token_file", "")),
            scheduler_enabled=bool(reconciliation_cfg.get("scheduler_enabled", True)),
            reconciliation_timezone=timezone,
            expiry_sweep_cron=validate_cron_expression(
                str(expiry_cfg.get("cron", DEFAULT_EXPIRY_SWEEP_CRON)),
                timezone,
            ),
            peer_sync_cron=validate_cron_expression(
                str(peer_sync_cfg.get("cron", DEFAULT_PEER_SYNC_CRON)),
                timezone,
            ),
            peer_sync_max_workers=max(1, int(peer_sync_cfg.get("max_workers", 1))),
        )

    @classmethod
    def from_env(cls, runtime_config_path: str = "runtime-config.yaml") -> AppSettings:
        return cls.from_yaml(
            runtime_config_path=os.environ.get("RUNTIME_CONFIG_PATH", runtime_config_path)
        )


def split_cron_expression(expression: str) -> dict[str, str]:
    """Split a six-field ``second minute hour day month day_of_week`` expression.

    ``day_of_week`` follows cron numbering (0 and 7 are Sunday) and is rewritten
    into APScheduler weekday names, so ``1-5`` becomes ``mon-fri``.
    """
    fields = expression.split()
    if len(fields) != len(CRON_FIELD_NAMES):
        raise ValueError(
            f"cron expression must have {len(CRON_FIELD_NAMES)} fields "
            f"({' '.join(CRON_FIELD_NAMES)}); got {expression!r}"
        )
    split = dict(zip(CRON_FIELD_NAMES, fields, strict=True))
    if split["day"] == "?":
        split["day"] = "*"
    split["day_of_week"] = _normalize_day_of_week(split["day_of_week"])
    return split


def build_cron_trigger(cadence: str, timezone: str) -> BaseTrigger:
    """Build the APScheduler trigger for a six-field cron expression.

    When both ``day`` and ``day_of_week`` are restricted the trigger fires when
    either one matches, as cron does.
    """
    fields = split_cron_expression(cadence)
    normalized_timezone = validate_timezone(timezone)
    raw_day_of_week = cadence.split()[-1]
    try:
        if _is_restricted(fields["day"]) and _is_restricted(raw_day_of_week):
            return OrTrigger(
                [
                    CronTrigger(timezone=normalized_timezone, **{**fields, "day_of_week": "*"}),
                    CronTrigger(timezone=normalized_timezone, **{**fields, "day": "*"}),
                ]
            )
        return CronTrigger(timezone=normalized_timezone, **fields)
    except ValueError as exc:
        raise ValueError(f"invalid cron expression {cadence!r}: {exc}") from exc


def validate_cron_expression(expression: str, timezone: str) -> str:
    normalized = " ".join(expression.split())
    build_cron_trigger(normalized, timezone)
    return normalized


def validate_timezone(timezone: str) -> str:
    normalized = timezone.strip()
    if not normalized:
        raise ValueError("reconciliation timezone cannot be empty")
    try:
        ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone in runtime config: {normalized!r}") from exc
    return normalized


def _is_restricted(field: str) -> bool:
    return not field.startswith(("*", "?"))


def _normalize_day_of_week(field: str) -> str:
    if field in {"*", "?"}:
        return "*"
    days: set[int] = set()
    for item in field.lower().split(","):
        days.update(_expand_day_of_week_item(item, field))
    if len(days) == len(WEEKDAY_NAMES):
        return "*"

    # APScheduler weeks run mon..sun, so Sunday sorts last.
    ordered = sorted((day - 1) % 7 for day in days)
    runs: list[list[int]] = []
    for day in ordered:
        if runs and runs[-1][-1] == day - 1:
            runs[-1].append(day)
        else:
            runs.append([day])
    parts = []
    for run in runs:
        first = WEEKDAY_NAMES[(run[0] + 1) % 7]
        last = WEEKDAY_NAMES[(run[-1] + 1) % 7]
        parts.append(first if first == last else f"{first}-{last}")
    return ",".join(parts)


def _expand_day_of_week_item(item: str, field: str) -> list[int]:
    base, _, step_text = item.partition("/")
    step = 1
    if step_text:
        if not step_text.isdigit() or int(step_text) < 1:
            raise ValueError(f"invalid day_of_week step in {field!r}")
        step = int(step_text)

    if base == "*":
        first, last = 0, 6
    elif "-" in base:
        first_text, _, last_text = base.partition("-")
        first = _parse_weekday(first_text, field)
        last = _parse_weekday(last_text, field)
        if last == 0 and first > 0:
            last = 7
        if first > last:
            raise ValueError(f"invalid day_of_week range in {field!r}")
    else:
        first = _parse_weekday(base, field)
        last = 6 if step_text and first < 7 else first

    return [day % 7 for day in range(first, last + 1, step)]


def _parse_weekday(token: str, field: str) -> int:
    if token.isdigit() and 0 <= int(token) <= 7:
        return int(token)
    if token in WEEKDAY_NAMES:
        return WEEKDAY_NAMES.index(token)
    raise ValueError(f"invalid day_of_week value {token!r} in {field!r}")



def _resolve_log_level(level: str) -> str:
    normalized = level.strip().upper()
    if normalized not in LOG_LEVELS:
        raise ValueError(
            f"unsupported app.log_level in runtime config: {level!r}; "
            f"expected one of {sorted(LOG_LEVELS)}"
        )
    return normalized


def _load_runtime_config(runtime_config_path: str) -> dict[str, Any]:
    path = Path(runtime_config_path)
    if not path.exists() or not path.is_file():
        return {}

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        return parsed
    return {}


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings.from_env()
