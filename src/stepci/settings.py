from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .process import check_shell

DEFAULT_WORKFLOW = "stepci_workflow.py"
DEFAULT_RUNS_DIR = ".stepci/runs"


@dataclass(frozen=True)
class Settings:
    workflow: Optional[str] = None
    workspace: Path = Path(".")
    step_timeout: Optional[float] = None
    shell: str = "bash"
    repo_url: Optional[str] = None
    ref: Optional[str] = None
    webhook_secret: Optional[str] = None
    runs_dir: Path = Path(DEFAULT_RUNS_DIR)


def _float_or_none(value: Optional[str], var: str) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        seconds = float(value)
    except ValueError:
        raise ValueError(f"{var} must be a number of seconds, got {value!r}")
    if seconds <= 0:
        raise ValueError(f"{var} must be positive, got {value!r}")
    return seconds


def _shell(value: Optional[str]) -> str:
    if value is None or value.strip() == "":
        return "bash"
    try:
        return check_shell(value.strip())
    except ValueError as e:
        raise ValueError(f"STEPCI_SHELL: {e}")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Read STEPCI_* variables. CLI options override whatever is found here."""
    env = os.environ if environ is None else environ
    return Settings(
        workflow=env.get("STEPCI_WORKFLOW") or None,
        workspace=Path(env.get("STEPCI_WORKSPACE", ".")),
        step_timeout=_float_or_none(env.get("STEPCI_STEP_TIMEOUT"), "STEPCI_STEP_TIMEOUT"),
        shell=_shell(env.get("STEPCI_SHELL")),
        repo_url=env.get("STEPCI_REPO_URL") or None,
        ref=env.get("STEPCI_REF") or None,
        webhook_secret=env.get("STEPCI_WEBHOOK_SECRET") or None,
        runs_dir=Path(env.get("STEPCI_RUNS_DIR", DEFAULT_RUNS_DIR)),
    )
