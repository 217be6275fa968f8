"""FastAPI operator surface: health, scheduled task history and manual runs."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request

from captcha_provider.config.settings import Settings, get_settings
from captcha_provider.errors import TaskAlreadyRunning
from captcha_provider.runtime import ProviderRuntime, build_runtime
from captcha_provider.sinks.base import CommitmentSink
from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.models import ScheduledTaskName, ScheduledTaskRecord
from captcha_provider.tasks.coordinator import TaskRunSummary


def _parse_task_name(raw: str) -> ScheduledTaskName:
    try:
        return ScheduledTaskName(raw)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail="Unknown scheduled task") from exc


def create_app(
    *,
    store: CommitmentStore | None = None,
    sink: CommitmentSink | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    def _ensure_runtime(app: FastAPI) -> None:
        if not hasattr(app.state, "runtime"):
            app.state.runtime = build_runtime(settings, store=store, sink=sink)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime(app)
        yield

    app_lifespan = lifespan if store is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Tests pass a store and may not run the lifespan.
    if store is not None:
        _ensure_runtime(app)

    def _get_runtime(request: Request) -> ProviderRuntime:
        _ensure_runtime(request.app)
        return request.app.state.runtime

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tasks/{task_name}", response_model=ScheduledTaskRecord)
    def get_latest_task(task_name: str, request: Request) -> ScheduledTaskRecord:
        runtime = _get_runtime(request)
        record = runtime.store.get_last_scheduled_task_status(_parse_task_name(task_name))
        if record is None:
            raise HTTPException(status_code=404, detail="Scheduled task has never run")
        return record

    @app.get("/tasks/{task_name}/history", response_model=list[ScheduledTaskRecord])
    def get_task_history(
        task_name: str,
        request: Request,
        limit: int = Query(default=20, ge=1, le=500),
    ) -> list[ScheduledTaskRecord]:
        runtime = _get_runtime(request)
        return runtime.store.list_scheduled_task_statuses(_parse_task_name(task_name), limit)

    @app.post("/tasks/{task_name}/run", response_model=TaskRunSummary)
    def run_task(
        task_name: str,
        request: Request,
        reference_block: int | None = Query(default=None, ge=0),
    ) -> TaskRunSummary:
        runtime = _get_runtime(request)
        name = _parse_task_name(task_name)
        try:
            return runtime.run_task(name, reference_block=reference_block)
        except TaskAlreadyRunning as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    return app


app = create_app()
