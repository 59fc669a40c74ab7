from __future__ import annotations

import hashlib
import hmac
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..model import Pipeline, Run, RunStatus, Trigger
from ..runner import run_pipeline
from ..settings import Settings, load_settings
from ..ui.console import get_console

# -------------------- Schemas --------------------


class EventAccepted(BaseModel):
    run_id: str
    trigger: str
    status: str


class StepResultResponse(BaseModel):
    step: str
    exit_code: int
    duration: float
    toolchain: Optional[str] = None
    timed_out: bool = False


class RunResponse(BaseModel):
    run_id: str
    trigger: str
    status: str
    first_failing_step: Optional[str] = None
    steps: list[str] = Field(default_factory=list)
    results: list[StepResultResponse] = Field(default_factory=list)
    error: Optional[str] = None


# -------------------- Registry --------------------


class RunRegistry:
    """In-memory index of runs started by this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, Run] = {}
        self._errors: dict[str, str] = {}

    def add(self, run: Run) -> None:
        with self._lock:
            self._runs[run.run_id] = run

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def all(self) -> list[Run]:
        with self._lock:
            return list(self._runs.values())

    def set_error(self, run_id: str, message: str) -> None:
        with self._lock:
            self._errors[run_id] = message

    def error(self, run_id: str) -> Optional[str]:
        with self._lock:
            return self._errors.get(run_id)


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check an `X-Hub-Signature-256: sha256=<hex>` header against the raw body."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


def checkout_source(trigger: Trigger, payload: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Repository URL and ref to check out for an event payload."""
    repo = payload.get("repository") or {}
    if trigger == Trigger.PULL_REQUEST:
        head = (payload.get("pull_request") or {}).get("head") or {}
        head_repo = head.get("repo") or repo
        return head_repo.get("clone_url"), head.get("sha")
    return repo.get("clone_url"), payload.get("after")


def _to_response(run: Run, error: Optional[str]) -> RunResponse:
    data = run.to_dict()
    return RunResponse(**data, error=error)


# -------------------- App factory --------------------


def create_app(
    pipeline: Pipeline,
    settings: Optional[Settings] = None,
    runner: Callable[..., Run] = run_pipeline,
) -> FastAPI:
    """
    Build the trigger endpoint for one pipeline.

    Every accepted event becomes its own Run in its own workspace under
    settings.runs_dir. Runs execute one after another on a single worker.
    """
    settings = settings or load_settings()
    registry = RunRegistry()
    worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stepci-run")

    app = FastAPI(title="stepci webhook")
    app.state.registry = registry
    app.state.worker = worker

    def execute(run: Run, repo_url: Optional[str], ref: Optional[str]) -> None:
        workspace = settings.runs_dir / run.run_id
        try:
            workspace.mkdir(parents=True, exist_ok=True)
            runner(
                pipeline,
                trigger=run.trigger,
                workspace=workspace,
                step_timeout=settings.step_timeout,
                shell=settings.shell,
                repo_url=settings.repo_url or repo_url,
                ref=settings.ref or ref,
                run=run,
            )
        except Exception as e:
            get_console().print_exception(e)
            registry.set_error(run.run_id, str(e))
            if not run.is_terminal:
                if run.status == RunStatus.PENDING:
                    run.start()
                pos = min(len(run.results), len(run.steps) - 1)
                run.fail(run.steps[pos].name)

    @app.on_event("shutdown")
    def shutdown() -> None:
        worker.shutdown(wait=False, cancel_futures=True)

    @app.post("/events", status_code=202)
    async def receive_event(
        request: Request,
        event: Optional[str] = None,
        x_github_event: Optional[str] = Header(default=None),
        x_hub_signature_256: Optional[str] = Header(default=None),
    ):
        body = await request.body()
        if settings.webhook_secret and not verify_signature(settings.webhook_secret, body, x_hub_signature_256):
            raise HTTPException(status_code=401, detail="Invalid signature")

        kind = event or x_github_event
        if kind == "ping":
            return JSONResponse(status_code=200, content={"pong": True})
        if kind not in {t.value for t in Trigger}:
            return JSONResponse(status_code=202, content={"ignored": True, "event": kind})

        try:
            payload = json.loads(body) if body else {}
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Body is not valid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")

        trigger = Trigger(kind)
        if trigger not in pipeline.triggers:
            return JSONResponse(status_code=202, content={"ignored": True, "event": kind})

        run = Run(trigger=trigger, steps=pipeline.steps)
        registry.add(run)
        repo_url, ref = checkout_source(trigger, payload)
        accepted = EventAccepted(run_id=run.run_id, trigger=trigger.value, status=run.status.value)
        worker.submit(execute, run, repo_url, ref)
        return accepted

    @app.get("/runs", response_model=list[RunResponse])
    async def list_runs():
        return [_to_response(r, registry.error(r.run_id)) for r in registry.all()]

    @app.get("/runs/{run_id}", response_model=RunResponse)
    async def get_run(run_id: str):
        run = registry.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return _to_response(run, registry.error(run_id))

    return app
