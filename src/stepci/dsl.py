# src/stepci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .actions.checkout import checkout_step
from .actions.toolchain import toolchain_step
from .model import Pipeline, Step, Trigger
from .process import check_shell


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    continue_on_error: bool = False,
    timeout: float | None = None,
    shell: str | None = None,
) -> Step:
    """Create a shell step."""
    if shell is not None:
        check_shell(shell)
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        continue_on_error=continue_on_error,
        timeout=timeout,
        shell=shell,
    )


def toolchain(
    channel: str,
    *components: str,
    name: str | None = None,
    targets: Iterable[str] = (),
    timeout: float | None = None,
) -> Step:
    """Select a toolchain: toolchain("nightly", "rustfmt")."""
    return toolchain_step(channel, name=name, components=components, targets=targets, timeout=timeout)


def checkout(name: str = "checkout", *, ref: str | None = None, timeout: float | None = None) -> Step:
    return checkout_step(name, ref=ref, timeout=timeout)


# ---------------------------------------------------------------------
# Functional pipeline helper
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *steps: Step,
    triggers: Iterable[str | Trigger] = (Trigger.PUSH, Trigger.PULL_REQUEST),
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Pipeline:
    """
    Declare a pipeline in one expression:

        def workflow():
            return pipeline(
                "ci",
                checkout(),
                toolchain("nightly", "rustfmt"),
                sh("fmt", "cargo +nightly fmt --all -- --check"),
            )
    """
    steps_final: List[Step] = list(steps)
    if not steps_final:
        raise ValueError(f"pipeline({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            s if s.cwd is not None or s.kind != "sh" else replace(s, cwd=cwd)
            for s in steps_final
        ]

    return Pipeline(
        name=name,
        steps=tuple(steps_final),
        triggers=frozenset(Trigger(t) for t in triggers),
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class PipelineBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._triggers: set[Trigger] = set()

    def on(self, *triggers: str):
        self._triggers.update(Trigger(t) for t in triggers)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **options):
        self._steps.append(sh(name, run, cwd=cwd, **options))
        return self

    def select_toolchain(self, channel: str, *components: str, name: str | None = None):
        self._steps.append(toolchain(channel, *components, name=name))
        return self

    def checkout(self, name: str = "checkout", ref: str | None = None):
        self._steps.append(checkout(name, ref=ref))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Pipeline:
        if not self._steps:
            raise ValueError(f"Pipeline '{self.name}' has no steps")

        return Pipeline(
            name=self.name,
            steps=tuple(self._steps),
            triggers=frozenset(self._triggers or Trigger),
            env=dict(self._env),
        )


def build(name: str) -> PipelineBuilder:
    """Convenience: build('ci').define_step(...).build()"""
    return PipelineBuilder(name)
