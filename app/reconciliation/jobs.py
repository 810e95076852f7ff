"""Expiry sweep and peer sync reconciliation jobs."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from app.config import AppSettings
from app.controller.base import ControllerClient, ControllerClientError, RequestContext
from app.controller.factory import create_controller_client
from app.reconciliation.enricher import enrich_members
from app.reconciliation.scheduler import Scheduler
from app.reconciliation.store import (
    ReconciliationStore,
    SqlReconciliationStore,
    UserRecord,
)
from app.repositories.audit_events import USER_TARGET_TYPE
from app.repositories.errors import RepositoryError

EXPIRY_SWEEP_JOB_NAME = "expiry_sweep"
PEER_SYNC_JOB_NAME = "peer_sync"
UNIT_ERRORS = (ControllerClientError, RepositoryError, SQLAlchemyError)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UnitFailure:
    unit: str
    ref: str
    error_code: str
    detail: str


@dataclass(slots=True)
class ExpirySweepResult:
    expired_user_ids: list[uuid.UUID] = field(default_factory=list)
    deauthorized_members: list[tuple[str, str]] = field(default_factory=list)
    skipped_networks: list[str] = field(default_factory=list)
    failures: list[UnitFailure] = field(default_factory=list)


@dataclass(slots=True)
class PeerSyncResult:
    users_processed: int = 0
    synced_networks: list[str] = field(default_factory=list)
    skipped_networks: list[str] = field(default_factory=list)
    members_upserted: int = 0
    failures: list[UnitFailure] = field(default_factory=list)

    def merge(self, other: PeerSyncResult) -> None:
        self.users_processed += other.users_processed
        self.synced_networks.extend(other.synced_networks)
        self.skipped_networks.extend(other.skipped_networks)
        self.members_upserted += other.members_upserted
        self.failures.extend(other.failures)


class ExpirySweepJob:
    """Deactivate expired non-admin users and revoke their members on the controller.

    Each member, network and user is attempted independently; there is no rollback
    of revocations that already went through.
    """

    name = EXPIRY_SWEEP_JOB_NAME

    def __init__(
        self,
        *,
        store: ReconciliationStore,
        controller: ControllerClient,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._controller = controller
        self._clock = clock or (lambda: datetime.now(UTC))

    def __call__(self) -> ExpirySweepResult:
        return self.run()

    def run(self, *, now: datetime | None = None) -> ExpirySweepResult:
        result = ExpirySweepResult()
        users = self._store.find_expired_active_users(now or self._clock())
        if not users:
            logger.debug("expiry sweep found no expired users")
            return result

        for user in users:
            if user.is_admin:
                continue
            try:
                self._expire_user(user, result)
            except UNIT_ERRORS as exc:
                result.failures.append(_unit_failure("user", str(user.id), exc))
                logger.warning("expiry sweep failed for user_id=%s: %s", user.id, exc)

        logger.info(
            "expiry sweep finished users_expired=%d members_deauthorized=%d failures=%d",
            len(result.expired_user_ids),
            len(result.deauthorized_members),
            len(result.failures),
        )
        return result

    def _expire_user(self, user: UserRecord, result: ExpirySweepResult) -> None:
        context = RequestContext(user_id=user.id)
        failures_before = len(result.failures)
        deauthorized: list[str] = []

        for network in self._store.find_networks_by_owner(user.id):
            try:
                detail = self._controller.get_network_detail(network.nwid, context=context)
            except ControllerClientError as exc:
                result.failures.append(_unit_failure("network", network.nwid, exc))
                logger.warning(
                    "expiry sweep could not read network nwid=%s user_id=%s: %s",
                    network.nwid,
                    user.id,
                    exc,
                )
                continue
            if detail is None:
                result.skipped_networks.append(network.nwid)
                logger.info("expiry sweep skipped network nwid=%s: no member data", network.nwid)
                continue

            for member in detail.members:
                member_ref = f"{network.nwid}/{member.member_id}"
                try:
                    self._controller.set_authorized(
                        member.member_id,
                        network.nwid,
                        False,
                        context=context,
                    )
                except ControllerClientError as exc:
                    result.failures.append(_unit_failure("member", member_ref, exc))
                    logger.warning("expiry sweep could not deauthorize %s: %s", member_ref, exc)
                    continue
                result.deauthorized_members.append((network.nwid, member.member_id))
                deauthorized.append(member_ref)
                try:
                    self._store.set_member_authorized(network.nwid, member.member_id, False)
                except SQLAlchemyError as exc:
                    result.failures.append(_unit_failure("member", member_ref, exc))
                    logger.warning(
                        "expiry sweep could not persist deauthorization %s: %s", member_ref, exc
                    )

        self._store.set_user_active(user.id, False)
        result.expired_user_ids.append(user.id)
        self._store.record_audit_event(
            action="user.expired",
            target_type=USER_TARGET_TYPE,
            target_id=str(user.id),
            metadata={
                "username": user.username,
                "expires_at": user.expires_at.isoformat() if user.expires_at else None,
                "deauthorized_members": deauthorized,
                "failures": [
                    {"unit": failure.unit, "ref": failure.ref, "error_code": failure.error_code}
                    for failure in result.failures[failures_before:]
                ],
            },
        )
        logger.info(
            "user expired user_id=%s username=%s members_deauthorized=%d",
            user.id,
            user.username,
            len(deauthorized),
        )


class PeerSyncJob:
    """Pull live member and peer state from the controller into the store.

    Networks of one user are synced one after another; users may be spread over a
    bounded thread pool.
    """

    name = PEER_SYNC_JOB_NAME

    def __init__(
        self,
        *,
        store: ReconciliationStore,
        controller: ControllerClient,
        max_workers: int = 1,
    ) -> None:
        self._store = store
        self._controller = controller
        self._max_workers = max(1, max_workers)

    def __call__(self) -> PeerSyncResult:
        return self.run()

    def run(self) -> PeerSyncResult:
        result = PeerSyncResult()
        users = self._store.find_active_users()
        if not users:
            logger.debug("peer sync found no active users")
            return result

        if self._max_workers == 1 or len(users) == 1:
            partials = [self._sync_user(user) for user in users]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(users)),
                thread_name_prefix="peer-sync",
            ) as pool:
                partials = list(pool.map(self._sync_user, users))

        for partial in partials:
            result.merge(partial)
        logger.info(
            "peer sync finished users=%d networks_synced=%d networks_skipped=%d "
            "members_upserted=%d failures=%d",
            result.users_processed,
            len(result.synced_networks),
            len(result.skipped_networks),
            result.members_upserted,
            len(result.failures),
        )
        return result

    def _sync_user(self, user: UserRecord) -> PeerSyncResult:
        partial = PeerSyncResult(users_processed=1)
        try:
            networks = self._store.find_networks_by_owner(user.id)
        except UNIT_ERRORS as exc:
            partial.failures.append(_unit_failure("user", str(user.id), exc))
            logger.warning("peer sync could not list networks for user_id=%s: %s", user.id, exc)
            return partial

        context = RequestContext(user_id=user.id)
        for network in networks:
            try:
                upserted = self._sync_network(network.nwid, context)
            except UNIT_ERRORS as exc:
                partial.failures.append(_unit_failure("network", network.nwid, exc))
                logger.warning(
                    "peer sync failed for nwid=%s user_id=%s: %s", network.nwid, user.id, exc
                )
                continue
            if upserted is None:
                partial.skipped_networks.append(network.nwid)
                logger.info("peer sync skipped network nwid=%s: no member data", network.nwid)
                continue
            partial.synced_networks.append(network.nwid)
            partial.members_upserted += upserted
        return partial

    def _sync_network(self, nwid: str, context: RequestContext) -> int | None:
        detail = self._controller.get_network_detail(nwid, context=context)
        if detail is None:
            return None
        peers = self._controller.get_peers(detail.members, context=context)
        enriched = enrich_members(nwid, detail.members, peers)
        for member in enriched:
            self._store.upsert_member(nwid, member.member_id, member)
        return len(enriched)


def run_expiry_sweep(settings: AppSettings) -> ExpirySweepResult:
    return ExpirySweepJob(
        store=SqlReconciliationStore(),
        controller=create_controller_client(settings),
    ).run()


def run_peer_sync(settings: AppSettings) -> PeerSyncResult:
    return PeerSyncJob(
        store=SqlReconciliationStore(),
        controller=create_controller_client(settings),
        max_workers=settings.peer_sync_max_workers,
    ).run()


def build_reconciliation_scheduler(
    settings: AppSettings,
    *,
    store: ReconciliationStore | None = None,
    controller: ControllerClient | None = None,
) -> Scheduler:
    job_store = store or SqlReconciliationStore()
    controller_client = controller or create_controller_client(settings)
    scheduler = Scheduler(timezone=settings.reconciliation_timezone)
    scheduler.schedule(
        EXPIRY_SWEEP_JOB_NAME,
        settings.expiry_sweep_cron,
        settings.reconciliation_timezone,
        ExpirySweepJob(store=job_store, controller=controller_client),
    )
    scheduler.schedule(
        PEER_SYNC_JOB_NAME,
        settings.peer_sync_cron,
        settings.reconciliation_timezone,
        PeerSyncJob(
            store=job_store,
            controller=controller_client,
            max_workers=settings.peer_sync_max_workers,
        ),
    )
    return scheduler


def _unit_failure(unit: str, ref: str, exc: Exception) -> UnitFailure:
    return UnitFailure(unit=unit, ref=ref, error_code=_error_code(exc), detail=str(exc))


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ControllerClientError):
        return exc.error_code
    if isinstance(exc, RepositoryError):
        return "repository_error"
    if isinstance(exc, SQLAlchemyError):
        return "store_error"
    return "unexpected_error"
