"""Recurring job scheduling for the reconciliation jobs.

``Scheduler`` owns an APScheduler ``BackgroundScheduler`` and a set of named
``JobHandle`` objects. A handle runs at most one invocation at a time: a firing
that arrives while the previous invocation is still executing is skipped, not
queued. Task failures are logged and recorded on the handle; they never reach
the scheduler thread or other jobs.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from app.config import build_cron_trigger, validate_timezone

logger = logging.getLogger(__name__)

type JobTask = Callable[[], object]


class JobRunStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class JobState:
    name: str
    cadence: str
    timezone: str
    running: bool
    cancelled: bool
    run_count: int
    failure_count: int
    skipped_count: int
    last_status: JobRunStatus | None
    last_started_at: datetime | None
    last_finished_at: datetime | None
    last_error: str | None
    next_run_at: datetime | None


class JobHandle:
    def __init__(
        self,
        *,
        name: str,
        cadence: str,
        timezone: str,
        task: JobTask,
        unschedule: Callable[[str], None] | None = None,
        next_run_lookup: Callable[[str], datetime | None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.name = name
        self.cadence = cadence
        self.timezone = timezone
        self._task = task
        self._unschedule = unschedule
        self._next_run_lookup = next_run_lookup
        self._clock = clock or (lambda: datetime.now(UTC))
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._cancelled = False
        self._running = False
        self._run_count = 0
        self._failure_count = 0
        self._skipped_count = 0
        self._last_status: JobRunStatus | None = None
        self._last_started_at: datetime | None = None
        self._last_finished_at: datetime | None = None
        self._last_error: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> JobState:
        next_run_at = None
        if self._next_run_lookup is not None and not self._cancelled:
            next_run_at = self._next_run_lookup(self.name)
        with self._state_lock:
            return JobState(
                name=self.name,
                cadence=self.cadence,
                timezone=self.timezone,
                running=self._running,
                cancelled=self._cancelled,
                run_count=self._run_count,
                failure_count=self._failure_count,
                skipped_count=self._skipped_count,
                last_status=self._last_status,
                last_started_at=self._last_started_at,
                last_finished_at=self._last_finished_at,
                last_error=self._last_error,
                next_run_at=next_run_at,
            )

    def run(self) -> JobRunStatus:
        if not self._run_lock.acquire(blocking=False):
            self.record_skip("previous invocation still running")
            return JobRunStatus.SKIPPED
        try:
            if self._cancelled:
                self.record_skip("job cancelled")
                return JobRunStatus.SKIPPED
            return self._invoke()
        finally:
            self._run_lock.release()

    def record_skip(self, reason: str) -> None:
        with self._state_lock:
            self._skipped_count += 1
        logger.info("job %s skipped: %s", self.name, reason)

    def cancel(self, *, wait: bool = True, timeout: float | None = None) -> bool:
        """Stop future firings; with ``wait`` block until any in-flight run finishes.

        Returns False only when ``timeout`` elapsed with an invocation still running.
        """
        self._cancelled = True
        if self._unschedule is not None:
            self._unschedule(self.name)
        if not wait:
            return not self._running

        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        return acquired

    def _invoke(self) -> JobRunStatus:
        started_at = self._clock()
        with self._state_lock:
            self._running = True
            self._run_count += 1
            self._last_started_at = started_at
        logger.info("job %s started", self.name)

        status = JobRunStatus.SUCCEEDED
        error: str | None = None
        try:
            self._task()
        except Exception as exc:
            status = JobRunStatus.FAILED
            error = f"{type(exc).__name__}: {exc}"
            logger.exception("job %s failed", self.name)

        finished_at = self._clock()
        with self._state_lock:
            self._running = False
            self._last_status = status
            self._last_finished_at = finished_at
            self._last_error = error
            if status is JobRunStatus.FAILED:
                self._failure_count += 1
        if status is JobRunStatus.SUCCEEDED:
            logger.info(
                "job %s finished in %.3fs",
                self.name,
                (finished_at - started_at).total_seconds(),
            )
        return status


class Scheduler:
    def __init__(
        self,
        *,
        timezone: str = "UTC",
        background_scheduler: BaseScheduler | None = None,
    ) -> None:
        self._timezone = validate_timezone(timezone)
        self._background = background_scheduler or BackgroundScheduler(timezone=self._timezone)
        self._background.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        self._handles: dict[str, JobHandle] = {}
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._background.running)

    @property
    def jobs(self) -> list[JobHandle]:
        with self._lock:
            return list(self._handles.values())

    def get(self, name: str) -> JobHandle | None:
        with self._lock:
            return self._handles.get(name)

    def schedule(
        self,
        name: str,
        cadence: str,
        timezone: str | None,
        task: JobTask,
    ) -> JobHandle:
        job_timezone = timezone or self._timezone
        trigger = build_cron_trigger(cadence, job_timezone)
        with self._lock:
            if name in self._handles:
                raise ValueError(f"job already scheduled: {name}")
            handle = JobHandle(
                name=name,
                cadence=cadence,
                timezone=job_timezone,
                task=task,
                unschedule=self._unschedule,
                next_run_lookup=self._next_run_time,
            )
            self._background.add_job(
                handle.run,
                trigger=trigger,
                id=name,
                name=name,
                max_instances=1,
                coalesce=True,
            )
            self._handles[name] = handle
        logger.info("scheduled job %s cadence=%r timezone=%s", name, cadence, job_timezone)
        return handle

    def start(self) -> None:
        if self.running:
            return
        self._background.start()
        logger.info("scheduler started with %d job(s)", len(self._handles))

    def stop(self, *, wait: bool = True) -> None:
        handles = self.jobs
        for handle in handles:
            handle.cancel(wait=False)
        if self.running:
            self._background.shutdown(wait=wait)
        if wait:
            for handle in handles:
                handle.cancel(wait=True)
        logger.info("scheduler stopped")

    def _unschedule(self, name: str) -> None:
        try:
            self._background.remove_job(name)
        except JobLookupError:
            logger.debug("job %s was already removed from the scheduler", name)

    def _next_run_time(self, name: str) -> datetime | None:
        job = self._background.get_job(name)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        handle = self.get(event.job_id)
        if handle is not None:
            handle.record_skip("previous invocation still running")
