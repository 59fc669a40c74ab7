# context.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ExecutionContext:
    """
    State handed from one step to the next.

    Steps never mutate a context: a step that changes what later steps see
    (selecting a toolchain, for instance) returns a new one.
    """
    workspace: Path
    env: Mapping[str, str] = field(default_factory=dict)
    toolchain: Optional[str] = None
    components: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def with_env(self, **overrides: str) -> "ExecutionContext":
        merged = dict(self.env)
        merged.update({k: str(v) for k, v in overrides.items()})
        return replace(self, env=merged)

    def with_toolchain(
        self,
        channel: str,
        components: Tuple[str, ...] = (),
        env: Optional[Mapping[str, str]] = None,
    ) -> "ExecutionContext":
        merged = dict(self.env)
        merged.update(env or {})
        return replace(self, env=merged, toolchain=channel, components=tuple(components))

    def step_env(self, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment for a single process: context env plus step-only overrides."""
        env = dict(self.env)
        env.update({k: str(v) for k, v in (overrides or {}).items()})
        return env
