"""Celery task wiring for on-demand reconciliation cycles."""

from __future__ import annotations

import logging
from collections.abc import Callable

from celery import Celery  # type: ignore[import-untyped]

from app.config import AppSettings, get_settings
from app.reconciliation.jobs import (
    EXPIRY_SWEEP_JOB_NAME,
    PEER_SYNC_JOB_NAME,
    run_expiry_sweep,
    run_peer_sync,
)

EXPIRY_SWEEP_TASK_NAME = "zt_admin.expiry_sweep"
PEER_SYNC_TASK_NAME = "zt_admin.peer_sync"
celery_app = Celery("zt_admin")

logger = logging.getLogger(__name__)


def configure_celery(settings: AppSettings) -> None:
    celery_app.conf.broker_url = settings.redis_url
    celery_app.conf.result_backend = None
    celery_app.conf.task_ignore_result = True
    celery_app.conf.task_serializer = "json"
    celery_app.conf.accept_content = ["json"]


@celery_app.task(name=EXPIRY_SWEEP_TASK_NAME)  # type: ignore[misc]
def expiry_sweep_task() -> None:
    settings = get_settings()
    configure_celery(settings)
    result = run_expiry_sweep(settings)
    logger.info(
        "expiry sweep task expired %d user(s) with %d failure(s)",
        len(result.expired_user_ids),
        len(result.failures),
    )


@celery_app.task(name=PEER_SYNC_TASK_NAME)  # type: ignore[misc]
def peer_sync_task() -> None:
    settings = get_settings()
    configure_celery(settings)
    result = run_peer_sync(settings)
    logger.info(
        "peer sync task upserted %d member(s) with %d failure(s)",
        result.members_upserted,
        len(result.failures),
    )


TASKS_BY_JOB_NAME: dict[str, Callable[..., None]] = {
    EXPIRY_SWEEP_JOB_NAME: expiry_sweep_task,
    PEER_SYNC_JOB_NAME: peer_sync_task,
}


def enqueue_reconciliation_job(*, job_name: str, settings: AppSettings) -> None:
    task = TASKS_BY_JOB_NAME.get(job_name)
    if task is None:
        raise ValueError(f"unknown reconciliation job: {job_name!r}")
    configure_celery(settings)
    task.delay()  # type: ignore[attr-defined]
