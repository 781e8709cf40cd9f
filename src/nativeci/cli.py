# cli.py
from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence

import click

from nativeci.deps import HabInstaller, HabLocator, MappingLocator, install_all, parse_root_overrides, resolve_roots
from nativeci.env import Environment, assemble
from nativeci.errors import ConfigurationError
from nativeci.git_facts.git import find_repo_root
from nativeci.invoker import build_command, invocation
from nativeci.model import AgentClass, Lane
from nativeci.pipeline import check_table, to_buildkite_steps
from nativeci.platform import LINUX, WINDOWS, Platform, host_platform, platform_for
from nativeci.runner import RetryPolicy, run_pipeline, run_process, select_jobs
from nativeci.settings import Settings
from nativeci.ui.console import Console, get_console, set_console
from nativeci.workflow import Workflow, load_workflow, to_records


def find_workflow_files(directory: Path) -> list[Path]:
    """
    Find all workflow files in a directory.

    Returns:
        List of Path objects for workflow files, default file first
    """
    default_workflow = directory / "nativeci_workflow.py"
    found = [default_workflow] if default_workflow.exists() else []
    for pattern in ("*_workflow.py", "*_workflow.json"):
        for path in sorted(directory.glob(pattern)):
            if path != default_workflow:
                found.append(path)
    return found


def discover_workflow(workflow_arg: Optional[str], repo_root: Path) -> Path:
    """
    Discover workflow file from argument, settings or the repository root.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  nativeci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files(repo_root)

    if not workflow_files:
        console.print_error(
            "No workflow file found",
            f"Could not find any workflow files in {repo_root}.",
            details=["Looked for:", "  nativeci_workflow.py", "  *_workflow.py", "  *_workflow.json"],
            suggestion="Create nativeci_workflow.py or pass --workflow.",
        )
        sys.exit(1)

    if len(workflow_files) > 1 and workflow_files[0].name != "nativeci_workflow.py":
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  nativeci run --workflow nativeci_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def resolve_environment(
    wf: Workflow,
    settings: Settings,
    *,
    roots: Sequence[str],
    install: bool,
    platform: Platform,
) -> Environment:
    """Install (optionally), resolve and assemble. Any missing dependency aborts."""
    console = get_console()
    if install:
        console.print_info(f"--- Installing {len(wf.dependencies)} dependencies")
        install_all(wf.dependencies, HabInstaller(settings.hab_binary))

    try:
        overrides = parse_root_overrides(roots)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--root")
    hab = HabLocator(settings.hab_binary)
    locator = MappingLocator(overrides, fallback=hab) if overrides else hab

    resolved = resolve_roots(wf.dependencies, locator)
    for ident, root in resolved.items():
        console.print_debug(f"{ident} -> {root.path}")
    return assemble(wf.dependencies, resolved, wf.rules, platform)


def _fail(ctx: click.Context, exc: BaseException) -> None:
    console = get_console()
    if isinstance(exc, click.ClickException):
        raise exc
    if isinstance(exc, ConfigurationError):
        console.print_error("Configuration error", str(exc), suggestion="No jobs were run.")
    else:
        console.print_exception(exc)
    sys.exit(1)


root_option = click.option(
    "--root", "roots", multiple=True, metavar="IDENT=PATH",
    help="Use PATH as the root of IDENT instead of asking hab (repeatable)",
)
workflow_option = click.option(
    "--workflow", default=None,
    help="Workflow file (defaults to nativeci_workflow.py in the repository root)",
)
repo_root_option = click.option(
    "--repo-root", default=None, type=click.Path(file_okay=False, path_type=Path),
    help="Repository root (defaults to the enclosing git repository)",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """nativeci: dependency environments and test job matrices for native components."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = Settings.from_env()


@cli.command("test")
@click.argument("component")
@click.option("-f", "--features", default="", help="Space-separated feature list")
@click.option("-t", "--test-options", default="", help="Options passed through to the test binary")
@click.option("--timeout", default=None, type=float, help="Kill the test run after this many seconds")
@click.option("--install/--no-install", default=True, show_default=True, help="Install dependencies first")
@root_option
@workflow_option
@repo_root_option
@click.pass_context
def test_cmd(ctx, component, features, test_options, timeout, install, roots, workflow, repo_root):
    """Run the test suite of one COMPONENT with the dependency environment."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    repo_root = repo_root or find_repo_root()

    try:
        wf = load_workflow(discover_workflow(workflow or settings.workflow, repo_root))
        platform = host_platform()
        env = resolve_environment(wf, settings, roots=roots, install=install, platform=platform)
        cmd = build_command(invocation(component, features, test_options), repo_root)
        if not cmd.cwd.is_dir():
            console.print_error("Unknown component", f"No such component directory: {cmd.cwd}")
            sys.exit(1)

        console.print_info(f"--- Running tests on {component} with command: '{cmd.display(platform)}'")
        code, _ = run_process(cmd.argv, cwd=cmd.cwd, env=env.overlay(os.environ), timeout=timeout, capture=False)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except subprocess.TimeoutExpired:
        console.print_error("Timed out", f"Tests for {component} exceeded {timeout:g}s")
        sys.exit(1)
    except FileNotFoundError as e:
        console.print_error("Command not found", str(e))
        sys.exit(127)
    except Exception as e:
        _fail(ctx, e)
    sys.exit(code)


@cli.command("run")
@workflow_option
@click.option(
    "--agent", default=None, type=click.Choice([a.value for a in AgentClass]),
    help="Only run jobs for this agent class (defaults to this host's)",
)
@click.option("--all-agents", is_flag=True, default=False, help="Run jobs for every agent class")
@click.option("--lane", default=None, type=click.Choice([l.value for l in Lane]), help="Only run this lane")
@click.option("--job", "labels", multiple=True, help="Only run the job with this label (repeatable)")
@click.option("--workers", default=None, type=int, help="Number of parallel jobs")
@click.option("--container/--no-container", default=False, help="Wrap Linux jobs in docker run")
@click.option("--install/--no-install", default=True, show_default=True, help="Install dependencies first")
@click.option("--print-plan/--no-print-plan", default=True, show_default=True, help="Print selected/skipped jobs")
@root_option
@repo_root_option
@click.pass_context
def run_cmd(ctx, workflow, agent, all_agents, lane, labels, workers, container, install, print_plan, roots, repo_root):
    """Run the job table on this agent with retries and quarantine lanes."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    repo_root = repo_root or find_repo_root()
    workflow_path = discover_workflow(workflow or settings.workflow, repo_root)

    try:
        wf = load_workflow(workflow_path)
        jobs = check_table(wf.jobs, source=wf.source)

        agent_class = None if all_agents else AgentClass(agent) if agent else host_platform().agent_class
        platform = platform_for(agent_class) if agent_class else host_platform()

        console.print_run_started(
            repository=repo_root.resolve().name,
            workflow=workflow_path.name,
            job_count=len(jobs),
            platform=platform.name,
        )
        selected = select_jobs(
            jobs,
            agent=agent_class,
            lane=Lane(lane) if lane else None,
            labels=labels,
            print_plan=print_plan,
        )

        env = resolve_environment(wf, settings, roots=roots, install=install, platform=platform)
        result = run_pipeline(
            selected,
            env,
            repo_root=repo_root,
            max_workers=workers or settings.workers,
            policy=RetryPolicy(backoff_seconds=settings.retry_backoff_seconds),
            container=container,
            container_workdir=settings.container_workdir,
        )
        console.print_results(result)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)

    if not result.passed:
        sys.exit(1)


@cli.command("env")
@workflow_option
@click.option(
    "--platform", "platform_name", default=None, type=click.Choice(["linux", "windows"]),
    help="Render for this platform (defaults to this host's)",
)
@click.option("--install/--no-install", default=False, show_default=True, help="Install dependencies first")
@root_option
@repo_root_option
@click.pass_context
def env_cmd(ctx, workflow, platform_name, install, roots, repo_root):
    """Print the assembled dependency environment as shell exports."""
    settings: Settings = ctx.obj["settings"]
    repo_root = repo_root or find_repo_root()
    try:
        wf = load_workflow(discover_workflow(workflow or settings.workflow, repo_root))
        platform = {"linux": LINUX, "windows": WINDOWS}.get(platform_name) or host_platform()
        env = resolve_environment(wf, settings, roots=roots, install=install, platform=platform)
    except Exception as e:
        _fail(ctx, e)
    for line in env.exports(platform):
        click.echo(line)


@cli.command("pipeline")
@workflow_option
@click.option(
    "--format", "fmt", default="steps", show_default=True, type=click.Choice(["steps", "records"]),
    help="steps: agent pipeline definition; records: nativeci JSON table",
)
@repo_root_option
@click.pass_context
def pipeline_cmd(ctx, workflow, fmt, repo_root):
    """Print the job table as JSON."""
    settings: Settings = ctx.obj["settings"]
    repo_root = repo_root or find_repo_root()
    try:
        wf = load_workflow(discover_workflow(workflow or settings.workflow, repo_root))
        if fmt == "records":
            payload = to_records(wf)
        else:
            payload = {"steps": to_buildkite_steps(check_table(wf.jobs, source=wf.source))}
    except Exception as e:
        _fail(ctx, e)
    click.echo(json.dumps(payload, indent=2))


if __name__ == "__main__":
    cli()
