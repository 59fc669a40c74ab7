# actions/toolchain.py
from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from ..context import ExecutionContext
from ..model import Step
from ..process import ProcessExecutor, ProcessResult


# ---------------------------------------------------------------------
# Toolchain step helper
# ---------------------------------------------------------------------

def toolchain_step(
    channel: str,
    *,
    name: str | None = None,
    components: Iterable[str] = (),
    targets: Iterable[str] = (),
    timeout: float | None = None,
) -> Step:
    """Create a step that makes `channel` the active toolchain for every later step."""
    if not channel:
        raise ValueError("toolchain channel must not be empty")
    return Step(
        name=name or f"toolchain {channel}",
        kind="toolchain",
        timeout=timeout,
        data={
            "channel": channel,
            "components": list(components),
            "targets": list(targets),
        },
    )


# ---------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------

@dataclass
class ProvisioningError(Exception):
    channel: str
    exit_code: int
    cmd: str
    output: str = ""
    timed_out: bool = False

    def __str__(self) -> str:
        if self.timed_out:
            return f"provisioning toolchain {self.channel!r} timed out (exit={self.exit_code}): {self.cmd}"
        return f"could not provision toolchain {self.channel!r} (exit={self.exit_code}): {self.cmd}"


class RustupProvisioner:
    """
    Installs a toolchain with rustup and selects it through RUSTUP_TOOLCHAIN.

    Selection is expressed as environment on the returned context, so only
    processes started after this call observe it.
    """

    def __init__(self, executor: ProcessExecutor, rustup: str = "rustup"):
        self.executor = executor
        self.rustup = rustup

    def install_argv(self, channel: str, components: Sequence[str], targets: Sequence[str]) -> List[str]:
        argv = [self.rustup, "toolchain", "install", channel, "--profile", "minimal", "--no-self-update"]
        for c in components:
            argv.extend(["--component", c])
        for t in targets:
            argv.extend(["--target", t])
        return argv

    def provision(
        self,
        channel: str,
        components: Sequence[str],
        targets: Sequence[str],
        ctx: ExecutionContext,
        *,
        timeout: float | None = None,
    ) -> ExecutionContext:
        # Import here to avoid circular import
        from ..runner import TOOL_HINTS, CIError

        if shutil.which(self.rustup, path=ctx.env.get("PATH")) is None:
            raise CIError(
                kind="tool_unavailable",
                step=None,
                message=f"{self.rustup} is not available",
                details={"hint": TOOL_HINTS["rustup"], "tool": self.rustup},
                exit_code=127,
            )

        argv = self.install_argv(channel, components, targets)
        proc = self.executor.run(argv, cwd=ctx.workspace, env=dict(ctx.env), timeout=timeout)
        if proc.exit_code != 0:
            raise ProvisioningError(
                channel=channel,
                exit_code=proc.exit_code,
                cmd=" ".join(argv),
                output=proc.stderr or proc.stdout,
                timed_out=proc.timed_out,
            )

        return ctx.with_toolchain(channel, tuple(components), env={"RUSTUP_TOOLCHAIN": channel})


# ---------------------------------------------------------------------
# Toolchain step execution
# ---------------------------------------------------------------------

def run_step(step: Step, ctx: ExecutionContext, opts) -> Tuple[ExecutionContext, ProcessResult]:
    """Run a toolchain-selection step; returns the context later steps will see."""
    # Import here to avoid circular import
    from ..runner import CIError, StepFailed
    from ..ui.console import get_console

    data = step.data or {}
    channel = data.get("channel")
    if not channel:
        raise CIError(kind="invalid_step", step=step.name, message="toolchain step has no channel")
    components = list(data.get("components") or [])
    targets = list(data.get("targets") or [])

    install_ctx = ctx.with_env(**step.env) if step.env else ctx
    try:
        selected = opts.provisioner.provision(
            channel, components, targets, install_ctx, timeout=step.timeout or opts.step_timeout
        )
    except ProvisioningError as e:
        raise StepFailed(step=step.name, exit_code=e.exit_code, cmd=e.cmd, stderr=e.output, timed_out=e.timed_out)
    except CIError as e:
        e.step = step.name
        raise

    if step.env:
        # step env is for the install only; keep just what the provisioner set
        changed = {k: v for k, v in selected.env.items() if install_ctx.env.get(k) != v}
        selected = ctx.with_toolchain(selected.toolchain, selected.components, env=changed)

    get_console().print_toolchain(channel, components)
    return selected, ProcessResult(exit_code=0)
