# runner.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple, Union

from .context import ExecutionContext
from .model import Pipeline, Run, Step, StepResult, Trigger
from .process import ProcessExecutor, ProcessResult, shell_argv
from .ui.console import get_console


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - a useful hint without a full traceback
    """
    kind: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)
    exit_code: int = 1

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailed(Exception):
    """A step's process exited non-zero (or timed out)."""
    step: str
    exit_code: int
    cmd: str
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0

    def __str__(self) -> str:
        if self.timed_out:
            return f"step '{self.step}' timed out (exit={self.exit_code}): {self.cmd}"
        return f"step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


TOOL_HINTS = {
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "cargo": "Install a Rust toolchain with rustup or fix PATH.",
    "git": "Install Git or fix PATH.",
    "bash": "Install bash or set STEPCI_SHELL=sh.",
    "curl": "Install curl or fix PATH.",
}


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

@dataclass
class RunOptions:
    """Collaborators and defaults shared by every step of one run."""
    executor: ProcessExecutor
    provisioner: object
    shell: str = "bash"
    step_timeout: float | None = None
    repo_url: str | None = None
    ref: str | None = None


def resolve_cwd(step: Step, ctx: ExecutionContext) -> Path:
    cwd = (ctx.workspace / (step.cwd or ".")).resolve()
    if not cwd.is_dir():
        raise CIError(
            kind="cwd_not_found",
            step=step.name,
            message=f"working directory not found: {cwd}",
        )
    return cwd


def _run_shell(step: Step, ctx: ExecutionContext, opts: RunOptions) -> ProcessResult:
    cwd = resolve_cwd(step, ctx)
    try:
        argv = shell_argv(step.run, step.shell or opts.shell)
    except ValueError as e:
        raise CIError(kind="invalid_shell", step=step.name, message=str(e))
    timeout = step.timeout or opts.step_timeout

    console = get_console()
    console.print_debug(f"cwd={cwd} timeout={timeout} toolchain={ctx.toolchain}")
    if step.env:
        console.print_debug(f"step env overrides: {sorted(step.env)}")

    proc = opts.executor.run(argv, cwd=cwd, env=ctx.step_env(step.env), timeout=timeout)
    if proc.exit_code != 0:
        raise StepFailed(
            step=step.name,
            exit_code=proc.exit_code,
            cmd=step.run,
            stdout=proc.stdout,
            stderr=proc.stderr,
            timed_out=proc.timed_out,
            duration=proc.duration,
        )
    return proc


def _run_step(step: Step, ctx: ExecutionContext, opts: RunOptions) -> Tuple[ExecutionContext, ProcessResult]:
    """
    Run one step and return the context the next step should see.

    Raises StepFailed / CIError on failure; never retries.
    """
    if step.kind == "sh":
        return ctx, _run_shell(step, ctx, opts)
    if step.kind == "toolchain":
        from .actions import toolchain
        return toolchain.run_step(step, ctx, opts)
    if step.kind == "checkout":
        from .actions import checkout
        return checkout.run_step(step, ctx, opts)
    raise CIError(kind="unknown_step_kind", step=step.name, message=f"unknown step kind {step.kind!r}")


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    pipeline: Union[Pipeline, Sequence[Step]],
    *,
    trigger: Union[Trigger, str] = Trigger.PUSH,
    workspace: str | Path = ".",
    executor: ProcessExecutor | None = None,
    provisioner: object | None = None,
    base_env: Optional[Mapping[str, str]] = None,
    step_timeout: float | None = None,
    shell: str = "bash",
    repo_url: str | None = None,
    ref: str | None = None,
    run: Run | None = None,
) -> Run:
    """
    Execute the steps of `pipeline` in declaration order, stopping at the
    first failure.

    Returns the finished Run: succeeded only if every step exited zero
    (steps marked continue_on_error excepted). On failure the remaining
    steps are never started and `first_failing_step` names the culprit.

    `run` lets a caller create the (pending) Run up front, e.g. to hand out
    its id before execution begins.
    """
    if not isinstance(pipeline, Pipeline):
        pipeline = Pipeline(name="pipeline", steps=tuple(pipeline))

    trigger = Trigger(trigger)
    if trigger not in pipeline.triggers:
        allowed = sorted(t.value for t in pipeline.triggers)
        raise ValueError(f"Pipeline '{pipeline.name}' does not run on {trigger.value!r} (triggers: {allowed})")

    console = get_console()
    executor = executor or ProcessExecutor()
    if provisioner is None:
        from .actions.toolchain import RustupProvisioner
        provisioner = RustupProvisioner(executor)

    opts = RunOptions(
        executor=executor,
        provisioner=provisioner,
        shell=shell,
        step_timeout=step_timeout,
        repo_url=repo_url,
        ref=ref,
    )

    env = dict(os.environ if base_env is None else base_env)
    env.update(pipeline.env)
    ctx = ExecutionContext(workspace=Path(workspace).resolve(), env=env)

    if run is None:
        run = Run(trigger=trigger, steps=pipeline.steps)
    elif run.trigger != trigger or run.steps != pipeline.steps:
        raise ValueError(f"Run {run.run_id} does not belong to pipeline '{pipeline.name}'")
    run.start()

    for idx, step in enumerate(pipeline.steps):
        console.print_step(step.name)
        active = ctx.toolchain

        try:
            ctx, proc = _run_step(step, ctx, opts)
        except (StepFailed, CIError) as e:
            if isinstance(e, StepFailed):
                result = StepResult(
                    step=step.name,
                    exit_code=e.exit_code,
                    duration=e.duration,
                    toolchain=active,
                    stdout=e.stdout,
                    stderr=e.stderr,
                    timed_out=e.timed_out,
                    continued=step.continue_on_error,
                )
                hint = None
                output = e.stderr or e.stdout
            else:
                result = StepResult(
                    step=step.name,
                    exit_code=e.exit_code,
                    toolchain=active,
                    continued=step.continue_on_error,
                )
                hint = e.details.get("hint")
                output = ""
            run.record(result)

            if step.continue_on_error:
                console.print_step_continued(step.name, result.exit_code)
                continue

            console.print_failure(step.name, str(e), exit_code=result.exit_code, hint=hint, output=output)
            run.fail(step.name)
            for skipped in pipeline.steps[idx + 1:]:
                console.print_step_skipped(skipped.name)
            return run
        except BaseException:
            # interrupted or unexpected error: the run still ends failed here
            run.record(StepResult(step=step.name, exit_code=1, toolchain=active))
            run.fail(step.name)
            raise

        run.record(
            StepResult(
                step=step.name,
                exit_code=proc.exit_code,
                duration=proc.duration,
                toolchain=active,
                stdout=proc.stdout,
                stderr=proc.stderr,
            )
        )
        console.print_success(step.name)

    run.succeed()
    return run
