# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Trigger(str, Enum):
    """Repository events that may start a run."""
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = (RunStatus.SUCCEEDED, RunStatus.FAILED)


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a pipeline."""
    name: str
    run: str = ""
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False
    timeout: float | None = None         # seconds

    # "sh" steps run `run` in a shell; other kinds are typed actions
    # ("toolchain", "checkout") whose parameters live in `data`.
    kind: str = "sh"
    data: Dict[str, Any] | None = None
    shell: str | None = None             # None -> settings default


@dataclass(frozen=True)
class Pipeline:
    """
    An ordered, immutable sequence of steps plus the triggers it answers to.

    Built once before a run starts; the runner never reorders or edits it.
    """
    name: str
    steps: Tuple[Step, ...]
    triggers: frozenset = frozenset(Trigger)
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "triggers", frozenset(Trigger(t) for t in self.triggers))

        if not self.steps:
            raise ValueError(f"Pipeline '{self.name}' has no steps")

        names = [s.name for s in self.steps]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate step names found: {dupes}")


@dataclass(frozen=True)
class StepResult:
    """What the runner observed for one executed step."""
    step: str
    exit_code: int
    duration: float = 0.0
    toolchain: str | None = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    continued: bool = False   # non-zero, but step allowed to fail

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class Run:
    """
    One execution of a pipeline for a single trigger event.

    Lifecycle: pending -> running -> {succeeded, failed}. Once terminal,
    the run refuses any further change.
    """
    trigger: Trigger
    steps: Tuple[Step, ...]
    status: RunStatus = RunStatus.PENDING
    first_failing_step: Optional[str] = None
    results: List[StepResult] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def exit_code(self) -> int:
        if self.status == RunStatus.SUCCEEDED:
            return 0
        if self.status != RunStatus.FAILED:
            raise RuntimeError(f"Run {self.run_id} has not finished (status={self.status.value})")
        for r in self.results:
            if r.step == self.first_failing_step and r.exit_code != 0:
                return r.exit_code
        return 1

    @property
    def executed(self) -> List[str]:
        return [r.step for r in self.results]

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Run {self.run_id} already {self.status.value}")

    def start(self) -> None:
        self._ensure_open()
        if self.status != RunStatus.PENDING:
            raise RuntimeError(f"Run {self.run_id} already started")
        self.status = RunStatus.RUNNING

    def record(self, result: StepResult) -> None:
        self._ensure_open()
        if self.status != RunStatus.RUNNING:
            raise RuntimeError(f"Run {self.run_id} is not running")
        self.results.append(result)

    def succeed(self) -> None:
        self._ensure_open()
        self.status = RunStatus.SUCCEEDED

    def fail(self, step_name: str) -> None:
        self._ensure_open()
        self.status = RunStatus.FAILED
        self.first_failing_step = step_name

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "status": self.status.value,
            "first_failing_step": self.first_failing_step,
            "steps": [s.name for s in self.steps],
            "results": [
                {
                    "step": r.step,
                    "exit_code": r.exit_code,
                    "duration": round(r.duration, 3),
                    "toolchain": r.toolchain,
                    "timed_out": r.timed_out,
                }
                for r in self.results
            ],
        }
