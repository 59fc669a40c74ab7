"""Console output formatting utilities for stepci."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from ..model import Run


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        trigger: str,
        step_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Repository: {repository}")
        print(f"Workflow: {workflow}")
        print(f"Trigger: {trigger}")
        print(f"Steps: {step_count}")
        print()

    def print_step(self, name: str) -> None:
        """Print step start message."""
        print(f"\nSTEP: {name}", flush=True)

    def print_success(self, name: str) -> None:
        print("STATUS: success", flush=True)

    def print_toolchain(self, channel: str, components: Sequence[str] = ()) -> None:
        """Print the toolchain that later steps will use."""
        if components:
            print(f"TOOLCHAIN: {channel} (components: {', '.join(components)})")
        else:
            print(f"TOOLCHAIN: {channel}")

    def print_step_continued(self, name: str, exit_code: int) -> None:
        print(f"STATUS: failed (exit={exit_code}), continuing: continue-on-error is set")

    def print_step_skipped(self, name: str) -> None:
        print(f"STEP SKIPPED: {name}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            output: Captured output tail, shown verbatim when present
        """
        print(f"STEP FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")
        if output:
            print("Output:")
            print(output.rstrip("\n"))
        if self.debug:
            print(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_plan(self, rows: Sequence[tuple]) -> None:
        """Print (index, step name, kind, toolchain) rows for `stepci plan`."""
        print("\nPLAN")
        for idx, name, kind, toolchain in rows:
            tc = toolchain or "default"
            print(f"  {idx:>2}. {name} [{kind}] (toolchain: {tc})")

    def print_results(self, run: "Run") -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        executed = {r.step: r for r in run.results}
        for step in run.steps:
            r = executed.get(step.name)
            if r is None:
                status_display = "SKIPPED"
            elif r.ok:
                status_display = "SUCCESS"
            elif r.continued:
                status_display = f"FAILED (exit={r.exit_code}, continued)"
            else:
                status_display = f"FAILED (exit={r.exit_code})"
            print(f"  {step.name}: {status_display}")
        print(f"\nRun {run.run_id}: {run.status.value.upper()}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
