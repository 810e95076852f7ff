"""Server CLI for running reconciliation jobs outside the web process."""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from collections.abc import Callable, Sequence

from app.config import AppSettings, get_settings
from app.controller.base import ControllerClient, ControllerClientError
from app.controller.factory import create_controller_client
from app.db.session import SessionScopeFactory, session_scope
from app.logging_setup import configure_logging
from app.reconciliation.jobs import (
    EXPIRY_SWEEP_JOB_NAME,
    PEER_SYNC_JOB_NAME,
    ExpirySweepJob,
    ExpirySweepResult,
    PeerSyncJob,
    PeerSyncResult,
    build_reconciliation_scheduler,
)
from app.reconciliation.store import SqlReconciliationStore
from app.reconciliation.tasks import enqueue_reconciliation_job

type ControllerFactory = Callable[[AppSettings], ControllerClient]


def main(
    argv: Sequence[str] | None = None,
    *,
    session_scope_factory: SessionScopeFactory | None = None,
    controller_factory: ControllerFactory | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    scope_factory = session_scope_factory or session_scope
    make_controller = controller_factory or create_controller_client

    try:
        settings = get_settings()
        configure_logging(settings.log_level)

        if args.command in {"expiry-sweep", "peer-sync"} and args.enqueue:
            job_name = (
                EXPIRY_SWEEP_JOB_NAME if args.command == "expiry-sweep" else PEER_SYNC_JOB_NAME
            )
            enqueue_reconciliation_job(job_name=job_name, settings=settings)
            print(f"enqueued {job_name}")
            return 0

        store = SqlReconciliationStore(scope_factory)
        controller = make_controller(settings)

        if args.command == "expiry-sweep":
            _print_expiry_result(ExpirySweepJob(store=store, controller=controller).run())
            return 0

        if args.command == "peer-sync":
            peer_sync = PeerSyncJob(
                store=store,
                controller=controller,
                max_workers=settings.peer_sync_max_workers,
            )
            _print_peer_sync_result(peer_sync.run())
            return 0

        if args.command == "scheduler":
            scheduler = build_reconciliation_scheduler(settings, store=store, controller=controller)
            stop_requested = threading.Event()
            signal.signal(signal.SIGTERM, lambda *_: stop_requested.set())
            scheduler.start()
            try:
                stop_requested.wait()
            except KeyboardInterrupt:
                pass
            finally:
                scheduler.stop(wait=True)
            return 0

        parser.error(f"unsupported command: {args.command}")
    except (ControllerClientError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m app.cli.reconciliation")
    subparsers = parser.add_subparsers(dest="command", required=True)

    expiry_parser = subparsers.add_parser(
        "expiry-sweep",
        help="deactivate expired users and deauthorize their members",
    )
    expiry_parser.add_argument("--enqueue", action="store_true", help="run on a celery worker")

    peer_sync_parser = subparsers.add_parser(
        "peer-sync",
        help="pull member and peer state from the controller into the database",
    )
    peer_sync_parser.add_argument("--enqueue", action="store_true", help="run on a celery worker")

    subparsers.add_parser("scheduler", help="run the recurring job scheduler in the foreground")
    return parser


def _print_expiry_result(result: ExpirySweepResult) -> None:
    print(
        f"expiry sweep expired={len(result.expired_user_ids)} "
        f"deauthorized={len(result.deauthorized_members)} "
        f"skipped_networks={len(result.skipped_networks)} failures={len(result.failures)}"
    )
    for failure in result.failures:
        print(f"  failed {failure.unit} {failure.ref}: {failure.error_code}", file=sys.stderr)


def _print_peer_sync_result(result: PeerSyncResult) -> None:
    print(
        f"peer sync users={result.users_processed} "
        f"synced_networks={len(result.synced_networks)} "
        f"skipped_networks={len(result.skipped_networks)} "
        f"members={result.members_upserted} failures={len(result.failures)}"
    )
    for failure in result.failures:
        print(f"  failed {failure.unit} {failure.ref}: {failure.error_code}", file=sys.stderr)


if __name__ == "__main__":
    raise SystemExit(main())
