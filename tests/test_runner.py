from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from stepci.dsl import pipeline, sh, toolchain
from stepci.model import Run, RunStatus, Step, Trigger
from stepci.process import ProcessResult
from stepci.runner import run_pipeline

from .conftest import FakeExecutor, FakeProvisioner


def _run(steps, executor, provisioner, tmp_path: Path, **kwargs):
    return run_pipeline(
        steps,
        workspace=tmp_path,
        executor=executor,
        provisioner=provisioner,
        base_env={"PATH": "/usr/bin:/bin"},
        **kwargs,
    )


# ---- scenarios ----


def test_all_steps_pass(executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path) -> None:
    steps = [sh("fmt-check", "fmt"), sh("build", "build"), sh("test", "test")]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.SUCCEEDED
    assert run.first_failing_step is None
    assert run.executed == ["fmt-check", "build", "test"]
    assert run.exit_code == 0


def test_first_step_fails_and_stops_the_run(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    executor.exit_codes["fmt"] = 1
    steps = [sh("fmt-check", "fmt"), sh("build", "build")]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "fmt-check"
    assert executor.scripts == ["fmt"]
    assert "build" not in run.executed


def test_toolchain_selection_applies_in_declaration_order(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [
        toolchain("stable", name="select stable"),
        sh("build", "build"),
        toolchain("nightly", name="select nightly"),
        sh("test", "test"),
    ]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.SUCCEEDED
    assert provisioner.provisioned == ["stable", "nightly"]
    by_script = {c.script: c.env.get("RUSTUP_TOOLCHAIN") for c in executor.calls}
    assert by_script == {"build": "stable", "test": "nightly"}
    recorded = {r.step: r.toolchain for r in run.results}
    assert recorded["build"] == "stable"
    assert recorded["test"] == "nightly"


def test_middle_failure_surfaces_its_exit_code(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    executor.exit_codes["c"] = 2
    steps = [sh("a", "a"), sh("b", "b"), sh("c", "c"), sh("d", "d")]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "c"
    assert executor.scripts == ["a", "b", "c"]
    assert run.exit_code == 2


# ---- properties ----


@pytest.mark.parametrize("failing", [None, "a", "b", "c", "d"])
def test_succeeded_iff_every_exit_code_is_zero(
    failing, executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    if failing:
        executor.exit_codes[failing] = 3
    steps = [sh(n, n) for n in "abcd"]

    run = _run(steps, executor, provisioner, tmp_path)

    all_zero = all(r.exit_code == 0 for r in run.results) and len(run.results) == len(steps)
    assert (run.status == RunStatus.SUCCEEDED) == all_zero
    if failing:
        idx = "abcd".index(failing)
        assert run.executed == list("abcd"[: idx + 1])


def test_execution_order_follows_declaration_order(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    names = ["clippy", "build", "fmt", "test"]

    run = _run([sh(n, n) for n in names], executor, provisioner, tmp_path)
    assert run.executed == names

    executor.calls.clear()
    reordered = list(reversed(names))
    run = _run([sh(n, n) for n in reordered], executor, provisioner, tmp_path)
    assert run.executed == reordered
    assert executor.scripts == reordered


def test_toolchain_never_affects_earlier_steps(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [sh("before", "before"), toolchain("nightly"), sh("after", "after")]

    _run(steps, executor, provisioner, tmp_path)

    env_of = {c.script: c.env for c in executor.calls}
    assert "RUSTUP_TOOLCHAIN" not in env_of["before"]
    assert env_of["after"]["RUSTUP_TOOLCHAIN"] == "nightly"


# ---- edge cases ----


def test_provisioning_failure_fails_at_that_step(
    executor: FakeExecutor, tmp_path: Path
) -> None:
    provisioner = FakeProvisioner(fail_on={"nightly": 1})
    steps = [sh("build", "build"), toolchain("nightly", name="nightly"), sh("test", "test")]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "nightly"
    assert executor.scripts == ["build"]


def test_continue_on_error_records_failure_but_keeps_going(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    executor.exit_codes["upload"] = 1
    steps = [sh("upload", "upload", continue_on_error=True), sh("after", "after")]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.SUCCEEDED
    assert run.executed == ["upload", "after"]
    assert run.results[0].exit_code == 1
    assert run.results[0].continued is True


def test_step_env_is_step_only_and_pipeline_env_is_shared(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    p = pipeline(
        "ci",
        sh("one", "one", env={"ONLY_ONE": "1"}),
        sh("two", "two"),
        env={"CARGO_TERM_COLOR": "always"},
    )

    _run(p, executor, provisioner, tmp_path)

    one, two = executor.calls
    assert one.env["ONLY_ONE"] == "1"
    assert "ONLY_ONE" not in two.env
    assert one.env["CARGO_TERM_COLOR"] == two.env["CARGO_TERM_COLOR"] == "always"


def test_missing_cwd_fails_the_step(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [sh("build", "build", cwd="does-not-exist"), sh("test", "test")]

    run = _run(steps, executor, provisioner, tmp_path)

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "build"
    assert executor.calls == []


def test_timeout_is_passed_through(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [sh("a", "a"), sh("b", "b", timeout=5)]

    _run(steps, executor, provisioner, tmp_path, step_timeout=60)

    assert [c.timeout for c in executor.calls] == [60, 5]


def test_toolchain_steps_get_the_timeout_too(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [toolchain("stable"), toolchain("nightly", timeout=30), sh("build", "build")]

    _run(steps, executor, provisioner, tmp_path, step_timeout=5)

    assert provisioner.timeouts == [5, 30]
    assert [c.timeout for c in executor.calls] == [5]


def test_trigger_not_listed_is_refused(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    p = pipeline("push-only", sh("a", "a"), triggers=["push"])

    with pytest.raises(ValueError, match="pull_request"):
        _run(p, executor, provisioner, tmp_path, trigger=Trigger.PULL_REQUEST)
    assert executor.calls == []


@pytest.mark.parametrize("trigger", ["push", "pull_request"])
def test_both_triggers_run_the_same_steps(
    trigger, executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    run = _run([sh("a", "a"), sh("b", "b")], executor, provisioner, tmp_path, trigger=trigger)

    assert run.trigger == Trigger(trigger)
    assert run.executed == ["a", "b"]


def test_finished_run_cannot_be_reused(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [sh("a", "a")]
    run = _run(steps, executor, provisioner, tmp_path)

    with pytest.raises(RuntimeError):
        _run(steps, executor, provisioner, tmp_path, run=run)


def test_failure_output_reaches_the_console(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path, capsys
) -> None:
    executor.exit_codes["c"] = 2

    _run([sh("c", "c"), sh("d", "d")], executor, provisioner, tmp_path)

    out = capsys.readouterr().out
    assert "STEP FAILED: c" in out
    assert "Exit code: 2" in out
    assert "boom" in out
    assert "STEP SKIPPED: d" in out


def test_real_processes(tmp_path: Path, provisioner: FakeProvisioner) -> None:
    from stepci.process import ProcessExecutor

    steps = [
        sh("write", "echo hello > out.txt", shell="sh"),
        sh("read", "grep -q hello out.txt", shell="sh"),
        sh("fail", "exit 4", shell="sh"),
        sh("never", "touch never.txt", shell="sh"),
    ]

    run = run_pipeline(
        steps,
        workspace=tmp_path,
        executor=ProcessExecutor(stream=False),
        provisioner=provisioner,
    )

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "fail"
    assert run.exit_code == 4
    assert (tmp_path / "out.txt").exists()
    assert not (tmp_path / "never.txt").exists()


def test_unsupported_shell_fails_the_step_not_the_runner(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    steps = [sh("a", "a"), Step(name="b", run="b", shell="zsh"), sh("c", "c")]
    run = Run(trigger=Trigger.PUSH, steps=tuple(steps))

    _run(steps, executor, provisioner, tmp_path, run=run)

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "b"
    assert run.executed == ["a", "b"]
    assert run.exit_code == 1
    assert executor.scripts == ["a"]


def test_unsupported_run_wide_shell_fails_the_first_shell_step(
    executor: FakeExecutor, provisioner: FakeProvisioner, tmp_path: Path
) -> None:
    run = _run([toolchain("stable"), sh("a", "a")], executor, provisioner, tmp_path, shell="fish")

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "a"
    assert executor.calls == []


def test_unexpected_error_still_finishes_the_run(
    provisioner: FakeProvisioner, tmp_path: Path, mocker: MockerFixture
) -> None:
    executor = mocker.Mock()
    executor.run.side_effect = [ProcessResult(exit_code=0), RuntimeError("executor exploded")]
    steps = [sh("a", "a"), sh("b", "b"), sh("c", "c")]
    run = Run(trigger=Trigger.PUSH, steps=tuple(steps))

    with pytest.raises(RuntimeError, match="exploded"):
        _run(steps, executor, provisioner, tmp_path, run=run)

    assert run.status == RunStatus.FAILED
    assert run.first_failing_step == "b"
    assert run.executed == ["a", "b"]
    assert executor.run.call_count == 2
