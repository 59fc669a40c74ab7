from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pytest import fixture

from stepci.actions.toolchain import ProvisioningError
from stepci.context import ExecutionContext
from stepci.process import ProcessResult
from stepci.ui.console import Console, set_console


@dataclass
class Call:
    argv: List[str]
    cwd: Path
    env: Dict[str, str]
    timeout: Optional[float]

    @property
    def script(self) -> str:
        return self.argv[-1]


@dataclass
class FakeExecutor:
    """Records every process it is asked to start; exit codes looked up by script."""
    exit_codes: Dict[str, int] = field(default_factory=dict)
    calls: List[Call] = field(default_factory=list)

    def run(self, argv, *, cwd, env, timeout=None) -> ProcessResult:
        call = Call(argv=list(argv), cwd=cwd, env=dict(env), timeout=timeout)
        self.calls.append(call)
        code = self.exit_codes.get(call.script, 0)
        return ProcessResult(exit_code=code, stderr="boom" if code else "")

    @property
    def scripts(self) -> List[str]:
        return [c.script for c in self.calls]


@dataclass
class FakeProvisioner:
    fail_on: Dict[str, int] = field(default_factory=dict)
    provisioned: List[str] = field(default_factory=list)
    timeouts: List[Optional[float]] = field(default_factory=list)

    def provision(self, channel, components, targets, ctx: ExecutionContext, *, timeout=None) -> ExecutionContext:
        self.provisioned.append(channel)
        self.timeouts.append(timeout)
        if channel in self.fail_on:
            raise ProvisioningError(channel=channel, exit_code=self.fail_on[channel], cmd=f"rustup toolchain install {channel}")
        return ctx.with_toolchain(channel, tuple(components), env={"RUSTUP_TOOLCHAIN": channel})


@fixture(autouse=True)
def quiet_console() -> Generator[Console, None, None]:
    console = Console(debug=False)
    set_console(console)
    yield console
    set_console(Console())


@fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@fixture
def examples_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "examples"
