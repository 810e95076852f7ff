from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from app.cli import reconciliation as reconciliation_cli
from app.config import AppSettings
from app.controller.base import MemberRecord, NetworkDetail, PeerSnapshot, RequestContext
from app.db.models import AppUser, NetworkMember
from app.db.session import SessionScopeFactory

NWID = "abcdef0123456789"
MEMBER_ID = "abcde12345"


class FakeController:
    client_name = "fake"

    def __init__(self) -> None:
        self.deauthorized: list[tuple[str, str]] = []

    def get_network_detail(self, nwid: str, *, context: RequestContext) -> NetworkDetail | None:
        return NetworkDetail(
            nwid=nwid,
            name="lab",
            members=(MemberRecord(member_id=MEMBER_ID, nwid=nwid, authorized=True),),
        )

    def get_peers(
        self,
        members: Sequence[MemberRecord],
        *,
        context: RequestContext,
    ) -> list[PeerSnapshot]:
        return []

    def set_authorized(
        self,
        member_id: str,
        nwid: str,
        authorized: bool,
        *,
        context: RequestContext,
    ) -> bool:
        self.deauthorized.append((nwid, member_id))
        return authorized


@pytest.fixture(autouse=True)
def isolated_runtime_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RUNTIME_CONFIG_PATH", str(tmp_path / "runtime-config.yaml"))


def test_cli_expiry_sweep_runs_one_cycle(
    session_factory: sessionmaker[Session],
    session_scope_factory: SessionScopeFactory,
    seed_user: Callable[..., uuid.UUID],
    capsys: pytest.CaptureFixture[str],
) -> None:
    user_id = seed_user(
        "expired",
        expires_at=datetime.now(UTC) - timedelta(days=1),
        networks=(NWID,),
    )
    controller = FakeController()

    exit_code = reconciliation_cli.main(
        ["expiry-sweep"],
        session_scope_factory=session_scope_factory,
        controller_factory=lambda _: controller,
    )

    assert exit_code == 0
    assert (
        "expiry sweep expired=1 deauthorized=1 skipped_networks=0 failures=0"
        in capsys.readouterr().out
    )
    assert controller.deauthorized == [(NWID, MEMBER_ID)]
    with session_factory() as session:
        user = session.get(AppUser, user_id)
        assert user is not None
        assert user.is_active is False


def test_cli_peer_sync_runs_one_cycle(
    session_factory: sessionmaker[Session],
    session_scope_factory: SessionScopeFactory,
    seed_user: Callable[..., uuid.UUID],
    capsys: pytest.CaptureFixture[str],
) -> None:
    seed_user("active", networks=(NWID,))

    exit_code = reconciliation_cli.main(
        ["peer-sync"],
        session_scope_factory=session_scope_factory,
        controller_factory=lambda _: FakeController(),
    )

    assert exit_code == 0
    assert (
        "peer sync users=1 synced_networks=1 skipped_networks=0 members=1 failures=0"
        in capsys.readouterr().out
    )
    with session_factory() as session:
        member = session.get(NetworkMember, {"id": MEMBER_ID, "nwid": NWID})
        assert member is not None
        assert member.online is False


@pytest.mark.parametrize(
    ("command", "job_name"),
    [("expiry-sweep", "expiry_sweep"), ("peer-sync", "peer_sync")],
)
def test_cli_enqueue_dispatches_to_celery(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    command: str,
    job_name: str,
) -> None:
    captured: dict[str, Any] = {}

    def fake_enqueue(*, job_name: str, settings: AppSettings) -> None:
        captured["job_name"] = job_name

    monkeypatch.setattr(reconciliation_cli, "enqueue_reconciliation_job", fake_enqueue)

    def unexpected_controller(_: AppSettings) -> FakeController:
        raise AssertionError("controller must not be built for --enqueue")

    exit_code = reconciliation_cli.main(
        [command, "--enqueue"],
        controller_factory=unexpected_controller,
    )

    assert exit_code == 0
    assert captured == {"job_name": job_name}
    assert f"enqueued {job_name}" in capsys.readouterr().out


def test_cli_reports_configuration_errors(
    session_scope_factory: SessionScopeFactory,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def broken_controller(_: AppSettings) -> FakeController:
        raise ValueError("ZT_CONTROLLER_AUTH_TOKEN is required")

    exit_code = reconciliation_cli.main(
        ["peer-sync"],
        session_scope_factory=session_scope_factory,
        controller_factory=broken_controller,
    )

    assert exit_code == 2
    assert "error: ZT_CONTROLLER_AUTH_TOKEN is required" in capsys.readouterr().err
