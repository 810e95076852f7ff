"""Common FastAPI dependencies."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from app.reconciliation.scheduler import Scheduler


def get_scheduler(request: Request) -> Scheduler | None:
    return cast(Scheduler | None, request.app.state.scheduler)
