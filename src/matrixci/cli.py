# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
from pathlib import Path
from typing import Dict, List

import click

from .config import CANCEL_POLICIES, Settings
from .dag import build_dag, expand_matrix, topo_levels
from .errors import WorkflowError
from .executor import host_family, os_family
from .git_facts.git import local_push_event
from .model import Pipeline, TriggerEvent
from .report import write_report
from .runner import PipelineRun, load_workflow
from .triggers import EVENT_TYPES, load_event
from .ui.console import Console, get_console, set_console


def find_workflow_files() -> list[Path]:
    """Find matrixci_workflow.py and other *_workflow.py files in the current directory."""
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / "matrixci_workflow.py"
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    others = sorted(p for p in current_dir.glob("*_workflow.py") if p != default_workflow)
    return workflow_files + others


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from the argument or by discovery.

    Raises:
        SystemExit: not found, or several candidates and none chosen
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  matrixci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", "  matrixci_workflow.py", "  *_workflow.py"],
            suggestion="Create matrixci_workflow.py or pass --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        # the default name wins over other candidates
        if workflow_files[0].name == "matrixci_workflow.py":
            return workflow_files[0]
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="matrixci run --workflow <file>",
        )
        sys.exit(1)

    return workflow_files[0]


def parse_matrix_filter(values: tuple[str, ...]) -> Dict[str, List[str]]:
    """["os=ubuntu-latest", "os=macos-latest"] -> {"os": ["ubuntu-latest", "macos-latest"]}"""
    out: Dict[str, List[str]] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key or not value:
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--matrix")
        out.setdefault(key.strip(), []).append(value.strip())
    return out


def host_matrix_filter(pipeline: Pipeline) -> Dict[str, List[str]]:
    """Keep only matrix values whose OS family is this host's."""
    host = host_family()
    out: Dict[str, List[str]] = {}
    for job in pipeline.jobs:
        if job.strategy is None:
            continue
        axis = job.strategy.matrix
        if "{" + axis.key + "}" not in job.runs_on:
            continue
        out.setdefault(axis.key, []).extend(v for v in axis.values if os_family(v) == host)
    return out


def resolve_event(event_type: str | None, branch: str | None, event_path: str | None, sha: str | None) -> TriggerEvent:
    if event_path:
        return load_event(event_path, event_type)
    if event_type is None and branch is None:
        return local_push_event()
    if branch is None:
        branch = local_push_event().target_branch
    return TriggerEvent(event_type=event_type or "push", target_branch=branch, sha=sha)


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Show command output and stack traces")
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a CI pipeline (gate + OS matrix) locally."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to matrixci_workflow.py)")
@click.option("--event", "event_type", type=click.Choice(EVENT_TYPES), default=None, help="Trigger event type")
@click.option("--branch", default=None, help="Target branch (pushed branch, or PR base branch)")
@click.option("--sha", default=None, help="Commit the event refers to")
@click.option("--event-path", default=None, type=click.Path(exists=True, dir_okay=False), help="Webhook payload JSON")
@click.option("--workers", default=None, type=int, help="Max legs running at once")
@click.option("--cache-dir", default=None, help="Dependency cache directory")
@click.option("--no-cache", is_flag=True, default=False, help="Neither restore nor save caches")
@click.option("--matrix", "matrix_items", multiple=True, help="Restrict a matrix axis, e.g. os=ubuntu-latest")
@click.option("--host-only/--all-legs", default=False, show_default=True, help="Only run matrix legs this OS can execute")
@click.option("--cancel-policy", type=click.Choice(CANCEL_POLICIES), default=None, help="On Ctrl-C: kill running legs or let them finish")
@click.option("--report", "report_path", default=None, help="Write a JSON check report here")
@click.pass_context
def run(ctx, workflow, event_type, branch, sha, event_path, workers, cache_dir, no_cache,
        matrix_items, host_only, cancel_policy, report_path):
    """Run the pipeline for one trigger event."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        settings = Settings.from_environ()
        pipeline = load_workflow(workflow_path)
        event = resolve_event(event_type, branch, event_path, sha)
        console.print_debug(f"workflow={workflow_path} event={event} settings={settings}")

        matrix_filter = parse_matrix_filter(matrix_items)
        if host_only:
            for key, values in host_matrix_filter(pipeline).items():
                matrix_filter[key] = [v for v in matrix_filter.get(key, values) if v in values]

        pipeline_run = PipelineRun(
            pipeline,
            event,
            repo_root=".",
            cache_root=None if no_cache else (cache_dir or settings.cache_dir),
            max_workers=workers or settings.workers,
            cancel_policy=cancel_policy or settings.cancel_policy,
            matrix_filter=matrix_filter or None,
            output_tail=settings.output_tail,
            console=console,
        )

        def _on_signal(signum, frame):
            console.print_info(f"\nReceived signal {signum}, cancelling ({pipeline_run.cancel_policy.value})...")
            pipeline_run.cancel()

        previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            result = pipeline_run.run()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        if result.triggered:
            console.print_results(result)
        if report_path:
            console.print_info(f"Report written to {write_report(result, report_path)}")

        if result.triggered and not result.ok:
            sys.exit(1)

    except (WorkflowError, TypeError, ValueError, FileNotFoundError) as e:
        console.print_error("Invalid workflow or event", str(e))
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        console.print_error(
            "Could not determine the trigger event from git",
            str(e),
            suggestion="Pass --event and --branch explicitly:\n  matrixci run --event push --branch main",
        )
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to matrixci_workflow.py)")
def plan(workflow):
    """Show triggers, stages and the legs each job expands to."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        pipeline = load_workflow(workflow_path)
        adj, indeg = build_dag(pipeline.jobs)
        stages = topo_levels(adj, indeg)
        legs = {}
        for j in pipeline.jobs:
            expanded = expand_matrix(j)
            legs[j.name] = [f"{leg.id} on {leg.environment}" for leg in expanded]
            if j.strategy is not None:
                legs[j.name].append(f"fail-fast: {str(j.strategy.fail_fast).lower()}")
    except (WorkflowError, TypeError, ValueError, FileNotFoundError) as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)

    console.print_header(f"Pipeline: {pipeline.name}")
    for t in pipeline.triggers:
        console.print_info(f"on {t.event_type}: {', '.join(t.branches) or '*'}")
    console.print_plan(stages, legs)


if __name__ == "__main__":
    cli()
