# actions/checkout.py
from __future__ import annotations

import subprocess
from typing import Tuple

from .. import git
from ..context import ExecutionContext
from ..model import Step
from ..process import TIMEOUT_EXIT_CODE, ProcessResult


def checkout_step(name: str = "checkout", *, ref: str | None = None, timeout: float | None = None) -> Step:
    """Create a step that makes sure the workspace holds the repository sources."""
    return Step(name=name, kind="checkout", data={"ref": ref} if ref else {}, timeout=timeout)


def run_step(step: Step, ctx: ExecutionContext, opts) -> Tuple[ExecutionContext, ProcessResult]:
    """
    Use the existing work tree when there is one, otherwise clone.

    The clone source comes from the run options (STEPCI_REPO_URL / --repo);
    a ref on the step wins over the run-wide ref.
    """
    # Import here to avoid circular import
    from ..runner import TOOL_HINTS, CIError, StepFailed
    from ..ui.console import get_console

    console = get_console()
    workspace = ctx.workspace
    ref = (step.data or {}).get("ref") or opts.ref

    try:
        if git.is_work_tree(workspace) and git.repo_root(workspace).resolve() == workspace.resolve():
            console.print_info(f"Using existing checkout at {git.head_sha(workspace)[:12]}")
            return ctx, ProcessResult(exit_code=0)

        if not opts.repo_url:
            raise CIError(
                kind="checkout_unavailable",
                step=step.name,
                message=f"{workspace} is not a git work tree and no repository URL is configured",
                details={"hint": "Run inside a clone, or pass --repo / set STEPCI_REPO_URL."},
            )

        git.clone(opts.repo_url, workspace, ref, timeout=step.timeout or opts.step_timeout)
        console.print_info(f"Checked out {opts.repo_url} at {git.head_sha(workspace)[:12]}")
    except git.GitError as e:
        raise StepFailed(step=step.name, exit_code=1, cmd="git checkout", stderr=str(e))
    except subprocess.TimeoutExpired as e:
        raise StepFailed(
            step=step.name,
            exit_code=TIMEOUT_EXIT_CODE,
            cmd=" ".join(e.cmd) if isinstance(e.cmd, list) else str(e.cmd),
            timed_out=True,
        )
    except FileNotFoundError:
        raise CIError(
            kind="tool_unavailable",
            step=step.name,
            message="git is not available",
            details={"hint": TOOL_HINTS["git"], "tool": "git"},
            exit_code=127,
        )

    return ctx, ProcessResult(exit_code=0)
