# workflow.py
from __future__ import annotations

import runpy
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .actions.checkout import checkout_step
from .actions.toolchain import toolchain_step
from .model import Pipeline, Step, Trigger
from .process import SHELLS

YAML_SUFFIXES = (".yml", ".yaml")


class WorkflowError(Exception):
    """Raised when a workflow file cannot be turned into a pipeline."""


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------

def load_workflow(path: str | Path, *, job: str | None = None) -> Pipeline:
    """
    Load a pipeline from a .py workflow or a GitHub-Actions style YAML file.

    `job` selects one job from a YAML file with several jobs; it is ignored
    for Python workflows.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_workflow(wf_path, job=job)
    if wf_path.suffix == ".py":
        return load_python_workflow(wf_path)
    raise ValueError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")


# ----------------------------------------------------------------------
# Python workflows
# ----------------------------------------------------------------------

def load_python_workflow(wf_path: Path) -> Pipeline:
    """
    The file must define one of:
      - workflow() -> Pipeline | list[Step]
      - PIPELINE = Pipeline(...)
      - STEPS = [Step, ...]
    """
    module_name = f"stepci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        found = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]
    elif "STEPS" in globals_dict:
        found = globals_dict["STEPS"]

    if isinstance(found, Pipeline):
        return found
    if isinstance(found, (list, tuple)) and found and all(isinstance(s, Step) for s in found):
        return Pipeline(name=wf_path.stem, steps=tuple(found))

    raise TypeError(
        "Workflow must return/define a Pipeline or a non-empty list of Step. "
        "Define workflow() -> Pipeline, PIPELINE = pipeline(...) or STEPS = [Step, ...]."
    )


# ----------------------------------------------------------------------
# YAML workflows (GitHub Actions subset)
# ----------------------------------------------------------------------

def load_yaml_workflow(wf_path: Path, *, job: str | None = None) -> Pipeline:
    try:
        with open(wf_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise WorkflowError(f"Failed to parse workflow file {wf_path}: {e}")
    return pipeline_from_dict(data, job=job, default_name=wf_path.stem)


def pipeline_from_dict(data: Any, *, job: str | None = None, default_name: str = "workflow") -> Pipeline:
    if not isinstance(data, dict):
        raise WorkflowError("Workflow must be a mapping at the top level")

    triggers = _parse_triggers(data)
    jobs = data.get("jobs")
    if not isinstance(jobs, dict) or not jobs:
        raise WorkflowError("Workflow has no jobs")

    if job is None:
        if len(jobs) > 1:
            raise WorkflowError(f"Workflow has several jobs, choose one with --job: {sorted(jobs)}")
        job = next(iter(jobs))
    if job not in jobs:
        raise WorkflowError(f"Job {job!r} not found. Known jobs: {sorted(jobs)}")

    job_def = jobs[job] or {}
    if not isinstance(job_def, dict):
        raise WorkflowError(f"Job {job!r} must be a mapping")

    raw_steps = job_def.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise WorkflowError(f"Job {job!r} has no steps")

    defaults = ((job_def.get("defaults") or {}).get("run") or {})
    steps = _unique_names([_parse_step(raw, idx, defaults) for idx, raw in enumerate(raw_steps, start=1)])

    env = _str_env(data.get("env"))
    env.update(_str_env(job_def.get("env")))

    return Pipeline(
        name=str(data.get("name") or job_def.get("name") or default_name),
        steps=tuple(steps),
        triggers=triggers,
        env=env,
    )


def _parse_triggers(data: Dict[Any, Any]) -> frozenset:
    # YAML 1.1 reads a bare `on:` key as the boolean True
    on = data.get("on", data.get(True))
    if on is None:
        raise WorkflowError("Workflow has no `on` section")

    if isinstance(on, str):
        names = [on]
    elif isinstance(on, list):
        names = [str(n) for n in on]
    elif isinstance(on, dict):
        names = [str(n) for n in on]
    else:
        raise WorkflowError(f"Unsupported `on` value: {on!r}")

    known = {t.value for t in Trigger}
    triggers = frozenset(Trigger(n) for n in names if n in known)
    if not triggers:
        raise WorkflowError(f"Workflow does not run on push or pull_request (on: {names})")
    return triggers


def _str_env(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise WorkflowError(f"env must be a mapping, got {type(raw).__name__}")
    out: Dict[str, str] = {}
    for k, v in raw.items():
        if isinstance(v, bool):
            out[str(k)] = "true" if v else "false"
        else:
            out[str(k)] = "" if v is None else str(v)
    return out


def _split_list(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(x).strip() for x in raw if str(x).strip()]
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def _parse_step(raw: Any, idx: int, defaults: Dict[str, Any]) -> Step:
    if not isinstance(raw, dict):
        raise WorkflowError(f"Step #{idx} must be a mapping")

    uses = raw.get("uses")
    run = raw.get("run")
    if isinstance(run, str) and not run.strip():
        run = None
    if uses and run:
        raise WorkflowError(f"Step #{idx} has both `uses` and `run`")
    if not uses and not run:
        raise WorkflowError(f"Step #{idx} has neither `uses` nor `run`")

    name: Optional[str] = raw.get("name")
    options = dict(
        env=_str_env(raw.get("env")),
        continue_on_error=_bool(raw.get("continue-on-error", False), "continue-on-error", idx),
        timeout=_timeout(raw.get("timeout-minutes"), idx),
    )
    if uses:
        step = _parse_action(str(uses), raw.get("with") or {}, name or f"Run {uses}", idx)
        return replace(step, **options)

    run = str(run)
    shell = raw.get("shell", defaults.get("shell"))
    if shell is not None and shell not in SHELLS:
        raise WorkflowError(f"Step #{idx}: unsupported shell {shell!r}. Supported: {sorted(SHELLS)}")

    return Step(
        name=str(name or f"Run {run.strip().splitlines()[0]}"),
        run=run,
        cwd=raw.get("working-directory", defaults.get("working-directory")),
        shell=shell,
        **options,
    )


def _bool(value: Any, key: str, idx: int) -> bool:
    # quoted "true" / "false" are accepted as well
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise WorkflowError(f"Step #{idx}: `{key}` must be true or false, got {value!r}")


def _timeout(value: Any, idx: int) -> Optional[float]:
    if value is None:
        return None
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        raise WorkflowError(f"Step #{idx}: `timeout-minutes` must be a number, got {value!r}")
    if isinstance(value, bool) or minutes <= 0:
        raise WorkflowError(f"Step #{idx}: `timeout-minutes` must be positive, got {value!r}")
    return minutes * 60


def _parse_action(uses: str, with_: Dict[str, Any], name: str, idx: int) -> Step:
    action, _, rev = uses.partition("@")

    if action == "actions/checkout":
        return checkout_step(name, ref=with_.get("ref"))

    if action == "dtolnay/rust-toolchain":
        channel = with_.get("toolchain") or rev
        if not channel or channel == "master":
            raise WorkflowError(f"Step #{idx}: {uses} needs `with.toolchain`")
        return toolchain_step(
            str(channel),
            name=name,
            components=_split_list(with_.get("components")),
            targets=_split_list(with_.get("targets")),
        )

    raise WorkflowError(f"Step #{idx}: unsupported action {uses!r}")


def _unique_names(steps: List[Step]) -> List[Step]:
    """Suffix repeated step names (`x`, `x (2)`, ...) so reports stay unambiguous."""
    seen: Dict[str, int] = {}
    out: List[Step] = []
    for s in steps:
        count = seen.get(s.name, 0) + 1
        seen[s.name] = count
        out.append(s if count == 1 else replace(s, name=f"{s.name} ({count})"))
    return out
