from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, cast

from fastapi.testclient import TestClient

from app.config import AppSettings
from app.main import create_app
from app.reconciliation.scheduler import Scheduler


def test_healthz_endpoint() -> None:
    app = create_app(settings=_settings())
    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_endpoint() -> None:
    app = create_app(settings=_settings())
    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"service": "zt-admin", "status": "ok"}


def test_reconciliation_jobs_without_scheduler() -> None:
    app = create_app(settings=_settings())
    with TestClient(app) as client:
        response = client.get("/reconciliation/jobs")
        missing = client.get("/reconciliation/jobs/peer_sync")

    assert response.json() == {"scheduler_running": False, "jobs": []}
    assert missing.status_code == 404


def test_lifespan_runs_injected_scheduler() -> None:
    scheduler = Scheduler(timezone="UTC")
    handle = scheduler.schedule("expiry_sweep", "0 0 0 * * *", "UTC", lambda: None)
    app = create_app(settings=_settings(), scheduler=scheduler)

    with TestClient(app) as client:
        assert scheduler.running is True
        response = client.get("/reconciliation/jobs")
        single = client.get("/reconciliation/jobs/expiry_sweep")
        unknown = client.get("/reconciliation/jobs/unknown")

    assert response.status_code == 200
    body = response.json()
    assert body["scheduler_running"] is True
    [job] = body["jobs"]
    assert job["name"] == "expiry_sweep"
    assert job["cadence"] == "0 0 0 * * *"
    assert job["run_count"] == 0
    assert job["last_status"] is None
    assert job["next_run_at"] is not None
    assert single.json()["name"] == "expiry_sweep"
    assert unknown.status_code == 404
    assert unknown.json() == {"detail": "unknown job"}

    assert scheduler.running is False
    assert handle.cancelled is True


class RecordingScheduler:
    def __init__(self) -> None:
        self.running = False
        self.jobs: list[Any] = []
        self.start_thread: int | None = None
        self.stop_thread: int | None = None
        self.stop_wait: bool | None = None

    def start(self) -> None:
        self.start_thread = threading.get_ident()
        self.running = True

    def stop(self, *, wait: bool = True) -> None:
        self.stop_thread = threading.get_ident()
        self.stop_wait = wait
        self.running = False

    def get(self, name: str) -> None:
        return None


def test_lifespan_stops_scheduler_off_the_event_loop() -> None:
    recorder = RecordingScheduler()
    app = create_app(settings=_settings(), scheduler=cast(Scheduler, recorder))

    with TestClient(app) as client:
        assert client.get("/healthz").status_code == 200
        assert recorder.running is True

    assert recorder.running is False
    assert recorder.stop_wait is True
    assert recorder.start_thread is not None
    assert recorder.stop_thread is not None
    assert recorder.stop_thread != recorder.start_thread


def _settings(**overrides: Any) -> AppSettings:
    base = AppSettings(
        app_env="test",
        redis_url="memory://",
        zt_provider="central",
        zt_central_base_url="https://api.zerotier.com/api/v1",
        zt_central_api_token="central-token",
        zt_controller_base_url="http://127.0.0.1:9993/controller",
        zt_controller_auth_token="controller-token",
        scheduler_enabled=False,
    )
    return replace(base, **overrides)
