"""Server CLI for user role and expiry management."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from datetime import UTC, datetime

from app.db.enums import UserRole
from app.db.session import SessionScopeFactory, session_scope
from app.repositories.audit_events import AuditEventRepository
from app.repositories.users import UserRepository, normalize_username


class CliValidationError(ValueError):
    """Raised when CLI input fails validation."""


def main(
    argv: Sequence[str] | None = None,
    *,
    session_scope_factory: SessionScopeFactory | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    scope_factory = session_scope_factory or session_scope

    try:
        if args.command == "create":
            return _run_create(args, scope_factory=scope_factory)
        if args.command == "set-expiry":
            return _run_set_expiry(args, scope_factory=scope_factory)
    except CliValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    parser.error(f"unsupported command: {args.command}")
    return 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m app.cli.users")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="create or update an account")
    create_parser.add_argument("--username", required=True)
    create_parser.add_argument("--email")
    create_parser.add_argument("--expires-at", help="ISO-8601 timestamp; naive values are UTC")
    admin_group = create_parser.add_mutually_exclusive_group()
    admin_group.add_argument("--admin", action="store_true")
    admin_group.add_argument("--no-admin", action="store_true")

    expiry_parser = subparsers.add_parser("set-expiry", help="change or clear an account expiry")
    expiry_parser.add_argument("--username", required=True)
    expiry_group = expiry_parser.add_mutually_exclusive_group(required=True)
    expiry_group.add_argument("--expires-at", help="ISO-8601 timestamp; naive values are UTC")
    expiry_group.add_argument("--never", action="store_true", help="remove the expiry")
    expiry_parser.add_argument(
        "--reactivate",
        action="store_true",
        help="mark the account active again",
    )
    return parser


def _run_create(args: argparse.Namespace, *, scope_factory: SessionScopeFactory) -> int:
    username = normalize_username(args.username)
    if not username:
        raise CliValidationError("username is required")
    expires_at = _parse_expires_at(args.expires_at)
    role = _resolve_role(args)

    summary: str
    with scope_factory() as db_session:
        user = UserRepository(db_session).upsert(
            username=username,
            email=_normalize_optional_value(args.email),
            role=role,
            expires_at=expires_at,
        )
        AuditEventRepository(db_session).create_user_event(
            action="user.provisioned",
            user_id=user.id,
            metadata={
                "username": username,
                "role": user.role.value,
                "expires_at": _isoformat(user.expires_at),
            },
        )
        summary = (
            f"provisioned user username={username} user_id={user.id} "
            f"role={user.role.value} expires_at={_isoformat(user.expires_at)}"
        )

    print(summary)
    return 0


def _run_set_expiry(args: argparse.Namespace, *, scope_factory: SessionScopeFactory) -> int:
    username = normalize_username(args.username)
    expires_at = None if args.never else _parse_expires_at(args.expires_at)

    summary: str
    with scope_factory() as db_session:
        user_repo = UserRepository(db_session)
        user = user_repo.get_by_username(username)
        if user is None:
            raise CliValidationError(f"unknown user: {username}")
        if user.role is UserRole.ADMIN and expires_at is not None:
            raise CliValidationError("admin accounts never expire; demote the account first")

        user_repo.set_expiry(user, expires_at=expires_at, reactivate=bool(args.reactivate))
        AuditEventRepository(db_session).create_user_event(
            action="user.expiry.changed",
            user_id=user.id,
            metadata={
                "expires_at": _isoformat(expires_at),
                "reactivated": bool(args.reactivate),
            },
        )
        summary = (
            f"updated user username={username} expires_at={_isoformat(expires_at)} "
            f"is_active={user.is_active}"
        )

    print(summary)
    return 0


def _parse_expires_at(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise CliValidationError(f"invalid --expires-at timestamp: {value}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _resolve_role(args: argparse.Namespace) -> UserRole | None:
    if bool(args.admin):
        return UserRole.ADMIN
    if bool(args.no_admin):
        return UserRole.USER
    return None


def _normalize_optional_value(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


if __name__ == "__main__":
    raise SystemExit(main())
