from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.cli import users as users_cli
from app.db.enums import UserRole
from app.db.models import AppUser, AuditEvent
from app.db.session import SessionScopeFactory


def test_cli_create_provisions_user_with_expiry(
    session_factory: sessionmaker[Session],
    session_scope_factory: SessionScopeFactory,
    capsys: pytest.CaptureFixture[str],
) -> None:
    exit_code = users_cli.main(
        [
            "create",
            "--username",
            " Contractor ",
            "--email",
            "contractor@example.net",
            "--expires-at",
            "2026-06-30T00:00:00",
        ],
        session_scope_factory=session_scope_factory,
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "provisioned user username=contractor" in out
    assert "role=user" in out
    assert "expires_at=2026-06-30T00:00:00+00:00" in out

    with session_factory() as session:
        user = session.execute(
            select(AppUser).where(AppUser.username == "contractor")
        ).scalar_one()
        assert user.email == "contractor@example.net"
        assert user.role is UserRole.USER
        assert user.is_active is True
        assert user.expires_at == datetime(2026, 6, 30)

        event = session.execute(
            select(AuditEvent).where(AuditEvent.action == "user.provisioned")
        ).scalar_one()
        assert event.target_id == str(user.id)
        assert event.event_metadata["role"] == "user"


def test_cli_create_is_idempotent_and_updates_role(
    session_factory: sessionmaker[Session],
    session_scope_factory: SessionScopeFactory,
) -> None:
    assert (
        users_cli.main(["create", "--username", "ops"], session_scope_factory=session_scope_factory)
        == 0
    )
    assert (
        users_cli.main(
            ["create", "--username", "OPS", "--admin"],
            session_scope_factory=session_scope_factory,
        )
        == 0
    )

    with session_factory() as session:
        users = session.execute(select(AppUser)).scalars().all()
        assert [(user.username, user.role) for user in users] == [("ops", UserRole.ADMIN)]


def test_cli_set_expiry_reactivates_user(
    session_factory: sessionmaker[Session],
    session_scope_factory: SessionScopeFactory,
    capsys: pytest.CaptureFixture[str],
) -> None:
    with session_factory() as session:
        session.add(
            AppUser(
                username="lapsed",
                role=UserRole.USER,
                is_active=False,
                expires_at=datetime(2025, 1, 1, tzinfo=UTC),
            )
        )
        session.commit()

    exit_code = users_cli.main(
        ["set-expiry", "--username", "lapsed", "--never", "--reactivate"],
        session_scope_factory=session_scope_factory,
    )

    assert exit_code == 0
    assert "updated user username=lapsed expires_at=None is_active=True" in capsys.readouterr().out
    with session_factory() as session:
        user = session.execute(select(AppUser).where(AppUser.username == "lapsed")).scalar_one()
        assert user.is_active is True
        assert user.expires_at is None
        event = session.execute(
            select(AuditEvent).where(AuditEvent.action == "user.expiry.changed")
        ).scalar_one()
        assert event.event_metadata == {"expires_at": None, "reactivated": True}


def test_cli_set_expiry_rejects_admin_accounts(
    session_scope_factory: SessionScopeFactory,
    capsys: pytest.CaptureFixture[str],
) -> None:
    users_cli.main(
        ["create", "--username", "root", "--admin"],
        session_scope_factory=session_scope_factory,
    )
    capsys.readouterr()

    exit_code = users_cli.main(
        ["set-expiry", "--username", "root", "--expires-at", "2026-01-01T00:00:00Z"],
        session_scope_factory=session_scope_factory,
    )

    assert exit_code == 2
    assert "admin accounts never expire" in capsys.readouterr().err


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        (["set-expiry", "--username", "ghost", "--never"], "unknown user: ghost"),
        (["create", "--username", "   "], "username is required"),
        (["create", "--username", "x", "--expires-at", "next tuesday"], "invalid --expires-at"),
    ],
)
def test_cli_reports_validation_errors(
    argv: list[str],
    message: str,
    session_scope_factory: SessionScopeFactory,
    capsys: pytest.CaptureFixture[str],
) -> None:
    exit_code = users_cli.main(argv, session_scope_factory=session_scope_factory)

    assert exit_code == 2
    assert message in capsys.readouterr().err
