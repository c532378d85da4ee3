"""Forge CLI entrypoint."""

import asyncio
import json
import sys
from pathlib import Path

import click

from .config.loader import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    create_default_config,
    load_config_or_default,
)
from .config.workspaces import WorkspaceRegistry
from .errors import ForgeError
from .executor.engine import ForgeEngine
from .scheduler.selection import blocked_tasks, is_task_done
from .tasks.schema import load_plan, load_state, require_plan_file, require_state_file
from .templates.paths import resolve_execution_paths
from .utils.logging import setup_logging

CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
}

json_option = click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print machine-readable JSON",
)


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


def _run(coro):
    """Run an engine coroutine, turning ForgeError into exit code 1."""
    try:
        return asyncio.run(coro)
    except ForgeError as e:
        _fail(str(e))


def _echo_json(value) -> None:
    click.echo(json.dumps(value, indent=2))


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--config",
    "-c",
    default=str(DEFAULT_CONFIG_PATH),
    help="Path to configuration file",
    type=click.Path(exists=False, path_type=Path),
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--workspace",
    "-w",
    default=None,
    help="Workspace root (defaults to the current directory)",
    type=click.Path(exists=False, file_okay=False, path_type=Path),
)
@click.option(
    "--workspace-id",
    default=None,
    help="Registered workspace id from the configuration",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path,
    verbose: bool,
    workspace: Path | None,
    workspace_id: str | None,
) -> None:
    """Forge - plan/phase execution engine for coding agents."""
    setup_logging(level="DEBUG" if verbose else "INFO")

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["workspace"] = workspace
    ctx.obj["workspace_id"] = workspace_id


def _load(ctx: click.Context) -> tuple[ForgeEngine, Path]:
    """Load configuration, configure logging and resolve the workspace root."""
    config_path: Path = ctx.obj["config_path"]
    verbose: bool = ctx.obj["verbose"]

    try:
        config = load_config_or_default(config_path)
    except ConfigError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_dir=config.logging.log_dir,
        rotation_mb=config.logging.rotation_mb,
        retention_days=config.logging.retention_days,
        use_colors=verbose,
    )

    workspace: Path | None = ctx.obj["workspace"]
    workspace_id: str | None = ctx.obj["workspace_id"]
    if workspace is not None and workspace_id is not None:
        _fail("Use either --workspace or --workspace-id, not both")

    if workspace_id is not None:
        try:
            root = WorkspaceRegistry.from_config(config).resolve(workspace_id)
        except ForgeError as e:
            _fail(str(e))
    else:
        root = (workspace or Path.cwd()).resolve()
        if not root.is_dir():
            _fail(f"Workspace root is not a directory: {root}")

    return ForgeEngine(config), root


@cli.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration",
)
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Initialize Forge configuration."""
    config_path: Path = ctx.obj["config_path"]

    if config_path.exists() and not force:
        click.echo(f"Configuration already exists: {config_path}")
        click.echo("Use --force to overwrite")
        sys.exit(1)

    try:
        create_default_config(config_path)
    except OSError as e:
        _fail(f"Failed to create configuration: {e}")

    click.echo(f"✓ Created configuration: {config_path}")
    click.echo("\nNext steps:")
    click.echo(f"  1. Review and customize {config_path}")
    click.echo("  2. Install a template under .agent/templates/ and write plans/<plan-id>/plan.json")
    click.echo("  3. Run: forge prepare <plan-id>")


@cli.command()
@click.argument("plan_id")
@click.pass_context
def prepare(ctx: click.Context, plan_id: str) -> None:
    """Initialize execution state for PLAN_ID."""
    engine, root = _load(ctx)
    _run(engine.prepare_execution(root, plan_id))
    click.echo(f"✓ Prepared {plan_id.strip()}")


@cli.command()
@click.argument("plan_id")
@click.pass_context
def reset(ctx: click.Context, plan_id: str) -> None:
    """Discard progress and regenerate state for PLAN_ID."""
    engine, root = _load(ctx)
    _run(engine.reset_execution_progress(root, plan_id))
    click.echo(f"✓ Reset {plan_id.strip()}")


@cli.command(name="next")
@click.argument("plan_id")
@json_option
@click.pass_context
def next_phase_cmd(ctx: click.Context, plan_id: str, as_json: bool) -> None:
    """Print the prompt for the next runnable phase of PLAN_ID."""
    engine, root = _load(ctx)
    prompt = _run(engine.get_next_phase_prompt(root, plan_id))

    if as_json:
        _echo_json(prompt.model_dump(by_alias=True) if prompt else None)
        return

    if prompt is None:
        click.echo("All tasks are complete or blocked.")
        return

    suffix = " (last phase)" if prompt.is_last_phase else ""
    click.echo(f"Task: {prompt.task_id}  Phase: {prompt.phase_id}{suffix}")
    click.echo("")
    click.echo(prompt.prompt_text)


@cli.command()
@click.argument("plan_id")
@click.argument("task_id", required=False)
@click.argument("phase_id", required=False)
@json_option
@click.pass_context
def status(
    ctx: click.Context,
    plan_id: str,
    task_id: str | None,
    phase_id: str | None,
    as_json: bool,
) -> None:
    """Show a phase status, or an overview of PLAN_ID when no task is given."""
    engine, root = _load(ctx)

    if task_id is not None:
        phase_status = _run(engine.get_phase_status(root, plan_id, task_id, phase_id or ""))
        if as_json:
            _echo_json(phase_status.model_dump(by_alias=True))
            return
        click.echo(f"Status: {phase_status.status}")
        if phase_status.commit_sha:
            click.echo(f"Commit: {phase_status.commit_sha}")
        return

    try:
        paths = resolve_execution_paths(root, plan_id)
        require_plan_file(paths.plan_path)
        require_state_file(paths.state_path)
        plan = load_plan(paths.plan_path, paths.plan_id)
        state = load_state(paths.state_path, paths.plan_id)
    except ForgeError as e:
        _fail(str(e))

    state_tasks = state.tasks_by_id()
    blocked = {item.task_id: item.waiting_on for item in blocked_tasks(plan, state)}
    rows = []
    for task in plan.tasks:
        task_state = state_tasks.get(task.id)
        if task_state is None:
            task_status = "missing"
        elif is_task_done(task_state):
            task_status = "completed"
        else:
            task_status = (task_state.status or "").strip() or "pending"
        rows.append(
            {
                "id": task.id,
                "name": task.name,
                "status": task_status,
                "commitSha": task_state.commit_sha if task_state else None,
                "blockedBy": blocked.get(task.id, []),
            }
        )

    if as_json:
        _echo_json({"planId": paths.plan_id, "tasks": rows})
        return

    click.echo(f"Plan: {paths.plan_id}")
    click.echo(f"Goal: {plan.goal}")
    for row in rows:
        line = f"  [{row['status']}] {row['id']} {row['name']}"
        if row["blockedBy"]:
            line += f" (waiting on {', '.join(row['blockedBy'])})"
        if row["commitSha"]:
            line += f" @ {row['commitSha'][:12]}"
        click.echo(line)


@cli.command()
@click.argument("plan_id")
@click.argument("task_id")
@click.argument("phase_id")
@json_option
@click.pass_context
def check(
    ctx: click.Context,
    plan_id: str,
    task_id: str,
    phase_id: str,
    as_json: bool,
) -> None:
    """Run the checks of PHASE_ID for TASK_ID and advance state."""
    engine, root = _load(ctx)
    response = _run(engine.run_phase_checks(root, plan_id, task_id, phase_id))

    if as_json:
        _echo_json(response.model_dump(by_alias=True))
    else:
        for result in response.results:
            mark = "✓" if result.passed else "✗"
            extra = " (timed out)" if result.timed_out else ""
            click.echo(
                f"{mark} {result.title} exit={result.exit_code} "
                f"{result.duration_ms}ms{extra}"
            )
            if not result.passed and result.stderr.strip():
                for line in result.stderr.strip().splitlines()[-20:]:
                    click.echo(f"    {line}")
        if not response.results:
            click.echo("No checks defined for this phase")
        click.echo("✓ Checks passed" if response.ok else "✗ Checks failed")

    sys.exit(0 if response.ok else 1)


@cli.command()
@json_option
@click.pass_context
def plans(ctx: click.Context, as_json: bool) -> None:
    """List plans found in the workspace."""
    engine, root = _load(ctx)
    found = _run(engine.list_plans(root))

    if as_json:
        _echo_json([plan.model_dump(by_alias=True, exclude_none=True) for plan in found])
        return

    if not found:
        click.echo("No plans found")
        return

    for plan in found:
        done = sum(1 for task in plan.tasks if task.status == "completed")
        click.echo(f"{plan.id}  {done}/{len(plan.tasks)} tasks  {plan.plan_path}")
        click.echo(f"    {plan.title or plan.goal}")


if __name__ == "__main__":
    cli()
