# process.py
from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

# GNU coreutils and shell conventions for "timed out", "cannot execute" and
# "command not found"
TIMEOUT_EXIT_CODE = 124
NOT_EXECUTABLE_EXIT_CODE = 126
NOT_FOUND_EXIT_CODE = 127

# Keep only the tail of captured output, enough for a failure report
OUTPUT_TAIL = 4000

SHELLS = {
    "bash": ["bash", "--noprofile", "--norc", "-e", "-o", "pipefail", "-c"],
    "sh": ["sh", "-e", "-c"],
}


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False


def check_shell(shell: str) -> str:
    if shell not in SHELLS:
        raise ValueError(f"Unsupported shell {shell!r}. Supported: {sorted(SHELLS)}")
    return shell


def shell_argv(script: str, shell: str = "bash") -> List[str]:
    """Build the argv that runs `script` through one of the supported shells."""
    return [*SHELLS[check_shell(shell)], script]


def _normalize_returncode(code: int) -> int:
    # subprocess reports "killed by signal N" as -N
    if code < 0:
        return 128 + (-code)
    return code


def _tail(text: Optional[Union[str, bytes]]) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-OUTPUT_TAIL:]


class ProcessExecutor:
    """
    Spawns one external process per call and blocks until it exits.

    With `stream=True` the child inherits stdout/stderr, so the operator sees
    output live and unmodified. With `stream=False` output is captured and the
    tail is returned in the result.
    """

    def __init__(self, stream: bool = True):
        self.stream = stream

    def run(
        self,
        argv: List[str],
        *,
        cwd: Path,
        env: Dict[str, str],
        timeout: float | None = None,
    ) -> ProcessResult:
        started = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd),
                env=env,
                text=True,
                capture_output=not self.stream,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            return ProcessResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_tail(e.stdout),
                stderr=_tail(e.stderr),
                duration=time.monotonic() - started,
                timed_out=True,
            )
        except FileNotFoundError as e:
            return ProcessResult(
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=str(e),
                duration=time.monotonic() - started,
            )
        except OSError as e:
            # e.g. permission denied on the program
            return ProcessResult(
                exit_code=NOT_EXECUTABLE_EXIT_CODE,
                stderr=str(e),
                duration=time.monotonic() - started,
            )

        return ProcessResult(
            exit_code=_normalize_returncode(proc.returncode),
            stdout=_tail(proc.stdout),
            stderr=_tail(proc.stderr),
            duration=time.monotonic() - started,
        )
