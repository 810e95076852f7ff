from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException

from app.config import AppSettings, get_settings
from app.dependencies import get_scheduler
from app.logging_setup import configure_logging
from app.reconciliation.jobs import build_reconciliation_scheduler
from app.reconciliation.scheduler import JobState, Scheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: AppSettings | None = None,
    *,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    app_settings = settings or get_settings()
    configure_logging(app_settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active_scheduler = scheduler
        if active_scheduler is None and app_settings.scheduler_enabled:
            active_scheduler = build_reconciliation_scheduler(app_settings)
        app.state.scheduler = active_scheduler
        if active_scheduler is not None:
            active_scheduler.start()
        else:
            logger.info("reconciliation scheduler disabled")
        try:
            yield
        finally:
            if active_scheduler is not None:
                await asyncio.to_thread(active_scheduler.stop, wait=True)

    app = FastAPI(title="ZT-Admin", version="0.1.0", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.scheduler = None

    @app.get("/", tags=["system"], name="root")
    async def root() -> dict[str, str]:
        return {"service": "zt-admin", "status": "ok"}

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/reconciliation/jobs", tags=["reconciliation"], name="reconciliation_jobs")
    async def reconciliation_jobs(
        active_scheduler: Annotated[Scheduler | None, Depends(get_scheduler)],
    ) -> dict[str, Any]:
        if active_scheduler is None:
            return {"scheduler_running": False, "jobs": []}
        return {
            "scheduler_running": active_scheduler.running,
            "jobs": [_serialize_job_state(handle.state) for handle in active_scheduler.jobs],
        }

    @app.get("/reconciliation/jobs/{job_name}", tags=["reconciliation"])
    async def reconciliation_job(
        job_name: str,
        active_scheduler: Annotated[Scheduler | None, Depends(get_scheduler)],
    ) -> dict[str, Any]:
        handle = active_scheduler.get(job_name) if active_scheduler is not None else None
        if handle is None:
            raise HTTPException(status_code=404, detail="unknown job")
        return _serialize_job_state(handle.state)

    return app


def _serialize_job_state(state: JobState) -> dict[str, Any]:
    return {
        "name": state.name,
        "cadence": state.cadence,
        "timezone": state.timezone,
        "running": state.running,
        "cancelled": state.cancelled,
        "run_count": state.run_count,
        "failure_count": state.failure_count,
        "skipped_count": state.skipped_count,
        "last_status": state.last_status.value if state.last_status else None,
        "last_started_at": _isoformat(state.last_started_at),
        "last_finished_at": _isoformat(state.last_finished_at),
        "last_error": state.last_error,
        "next_run_at": _isoformat(state.next_run_at),
    }


def _isoformat(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


app = create_app()
