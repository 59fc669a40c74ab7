# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from stepci.git import GitError, get_remote_url
from stepci.model import Trigger
from stepci.process import ProcessExecutor
from stepci.runner import CIError, run_pipeline
from stepci.settings import DEFAULT_WORKFLOW, Settings, load_settings
from stepci.ui.console import Console, get_console, set_console
from stepci.workflow import WorkflowError, load_workflow


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """
    Find candidate workflow files under `root`.

    Returns:
        stepci_workflow.py, other *_workflow.py files, then any
        .github/workflows/*.yml / *.yaml files.
    """
    workflow_files = []

    default_workflow = root / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in sorted(root.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)

    gh_dir = root / ".github" / "workflows"
    if gh_dir.is_dir():
        workflow_files.extend(sorted([*gh_dir.glob("*.yml"), *gh_dir.glob("*.yaml")]))

    return workflow_files


def discover_workflow(workflow_arg: str | None, root: Path = Path(".")) -> Path:
    """
    Resolve the workflow file from the CLI argument, settings, or discovery.

    Raises:
        SystemExit: If no workflow, or more than one candidate, is found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix == "":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  stepci run --workflow .github/workflows/ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files(root)

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
                "  .github/workflows/*.yml",
            ],
            suggestion="Specify a workflow explicitly:\n  stepci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  stepci run --workflow .github/workflows/ci.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def _settings_or_exit() -> Settings:
    try:
        return load_settings()
    except ValueError as e:
        get_console().print_error("Invalid configuration", str(e))
        sys.exit(1)


def _load_or_exit(ctx, workflow_path: Path, job: str | None):
    console = get_console()
    try:
        return load_workflow(workflow_path, job=job)
    except (FileNotFoundError, ValueError, TypeError, WorkflowError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """stepci: run a CI step list in order, stopping at the first failure."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or GitHub-style .yml)")
@click.option("--job", default=None, help="Job to run when a YAML workflow has several")
@click.option(
    "--trigger",
    type=click.Choice([t.value for t in Trigger]),
    default=Trigger.PUSH.value,
    show_default=True,
    help="Event that started this run",
)
@click.option("--workspace", default=None, help="Directory steps run in (defaults to STEPCI_WORKSPACE or .)")
@click.option("--timeout", "step_timeout", default=None, type=float, help="Per-step timeout in seconds")
@click.option("--capture/--stream", default=False, help="Capture step output instead of streaming it live")
@click.option("--repo", "repo_url", default=None, help="Repository URL for checkout steps outside a clone")
@click.option("--ref", default=None, help="Git ref for checkout steps")
@click.pass_context
def run(ctx, workflow, job, trigger, workspace, step_timeout, capture, repo_url, ref):
    """Run a workflow."""
    console = get_console()
    settings = _settings_or_exit()

    workflow_path = discover_workflow(workflow or settings.workflow)
    pipeline = _load_or_exit(ctx, workflow_path, job)
    workspace_p = Path(workspace) if workspace else settings.workspace

    try:
        try:
            repo_url_display = get_remote_url("origin", cwd=workspace_p)
            repo_name = repo_url_display.rstrip("/").split("/")[-1].replace(".git", "")
        except (GitError, FileNotFoundError):
            repo_name = workspace_p.resolve().name

        console.print_run_started(
            repository=repo_name,
            workflow=workflow_path.name,
            trigger=trigger,
            step_count=len(pipeline.steps),
        )

        result = run_pipeline(
            pipeline,
            trigger=trigger,
            workspace=workspace_p,
            executor=ProcessExecutor(stream=not capture),
            step_timeout=step_timeout or settings.step_timeout,
            shell=settings.shell,
            repo_url=repo_url or settings.repo_url,
            ref=ref or settings.ref,
        )

        console.print_results(result)
        sys.exit(result.exit_code)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (CIError, ValueError) as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or GitHub-style .yml)")
@click.option("--job", default=None, help="Job to show when a YAML workflow has several")
@click.pass_context
def plan(ctx, workflow, job):
    """Show the ordered steps and the toolchain each one will see."""
    settings = _settings_or_exit()
    workflow_path = discover_workflow(workflow or settings.workflow)
    pipeline = _load_or_exit(ctx, workflow_path, job)

    rows = []
    active = None
    for idx, step in enumerate(pipeline.steps, start=1):
        rows.append((idx, step.name, step.kind, active))
        if step.kind == "toolchain":
            active = (step.data or {}).get("channel")

    console = get_console()
    console.print_info(f"Pipeline: {pipeline.name}")
    console.print_info(f"Triggers: {', '.join(sorted(t.value for t in pipeline.triggers))}")
    console.print_plan(rows)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file run for every accepted event")
@click.option("--job", default=None, help="Job to run when a YAML workflow has several")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8080, type=int, show_default=True)
@click.pass_context
def serve(ctx, workflow, job, host, port):
    """Accept push / pull_request webhooks and run the workflow for each."""
    import uvicorn

    from stepci.webhook.app import create_app

    settings = _settings_or_exit()
    workflow_path = discover_workflow(workflow or settings.workflow)
    pipeline = _load_or_exit(ctx, workflow_path, job)

    app = create_app(pipeline, settings=settings)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
