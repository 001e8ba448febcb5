# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click

from .config import load_settings
from .dag import validate
from .errors import WorkflowError
from .git_facts import local_event
from .matrix import expand
from .model import JobTemplate
from .runner import EXIT_CANCELLED, EXIT_FAILED, EXIT_INVALID_WORKFLOW, load_workflow, run_pipeline
from .tasks.command import CancelToken
from .trigger import EventDescriptor, classify, event_from_github_env
from .ui.console import Console, get_console, set_console
from .workflows.crate import workflow as crate_workflow

DEFAULT_WORKFLOW_FILE = "releaseci_workflow.py"
EVENT_TYPES = ["push", "pull_request", "pull-request"]


def discover_workflow(workflow_arg: str | None) -> Tuple[List[JobTemplate], str]:
    """
    Resolve the workflow to run.

    Explicit path first, then releaseci_workflow.py in the current directory,
    then the built-in crate workflow.
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
                suggestion="Create a workflow file or specify a different path:\n  releaseci run --workflow my_workflow.py",
            )
            sys.exit(EXIT_FAILED)
        return load_workflow(workflow_path), workflow_path.name

    default = Path(DEFAULT_WORKFLOW_FILE)
    if default.exists():
        return load_workflow(default), default.name

    return crate_workflow(), "builtin:crate"


def _load_or_exit(workflow_arg: str | None) -> Tuple[List[JobTemplate], str]:
    try:
        return discover_workflow(workflow_arg)
    except (TypeError, ValueError, FileNotFoundError) as e:
        get_console().print_error("Failed to load workflow", str(e))
        sys.exit(EXIT_INVALID_WORKFLOW)


def _event_from_options(settings, event_type, ref, pr_action, base_ref, from_github_env) -> EventDescriptor:
    secret_present = settings.secret() is not None
    if from_github_env:
        return event_from_github_env(secret_present=secret_present)
    if event_type:
        return EventDescriptor(
            event_type=event_type,
            ref=ref or "",
            pr_action=pr_action,
            base_ref=base_ref,
            secret_present=secret_present,
        )
    return local_event(secret_present=secret_present)


def event_options(f):
    f = click.option("--from-github-env", is_flag=True, default=False, help="Read the event from GITHUB_* variables")(f)
    f = click.option("--base-ref", default=None, help="Pull request target branch")(f)
    f = click.option("--pr-action", default=None, help="Pull request action (opened, synchronize, ...)")(f)
    f = click.option("--ref", default=None, help="Git ref, e.g. refs/tags/1.2.3 or refs/heads/main")(f)
    f = click.option("--event", "event_type", type=click.Choice(EVENT_TYPES), default=None, help="Event type")(f)
    f = click.option("--main-branch", default=None, help="Main branch name (default: $RELEASECI_MAIN_BRANCH or main)")(f)
    return f


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and captured task output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print errors and the final results")
@click.pass_context
def cli(ctx, debug, quiet):
    """Dependency-ordered CI pipeline with a gated publish step."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command("classify")
@event_options
def classify_event(main_branch, event_type, ref, pr_action, base_ref, from_github_env):
    """Print the trigger an event would produce."""
    console = get_console()
    settings = load_settings().with_overrides(main_branch=main_branch)
    try:
        event = _event_from_options(settings, event_type, ref, pr_action, base_ref, from_github_env)
    except (ValueError, subprocess.CalledProcessError, FileNotFoundError) as e:
        console.print_error("Could not determine event", str(e))
        sys.exit(EXIT_FAILED)

    trigger = classify(event, main_branch=settings.main_branch)
    if trigger is None:
        console.print_not_applicable(f"{event.event_type} {event.ref}")
        return
    console.print_info(f"kind: {trigger.kind.value}")
    console.print_info(f"ref: {trigger.ref}")
    console.print_info(f"ref_name: {trigger.ref_name}")
    console.print_info(f"prerelease: {str(trigger.is_prerelease).lower()}")
    console.print_info(f"secret available: {str(trigger.is_secret_available).lower()}")


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW_FILE}, then the built-in crate workflow)")
def plan(workflow):
    """Validate the workflow and print stages and matrix instances without running."""
    console = get_console()
    jobs, name = _load_or_exit(workflow)
    try:
        levels = validate(jobs)
    except WorkflowError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(EXIT_INVALID_WORKFLOW)

    by_name = {j.name: j for j in jobs}
    console.print_header(f"Plan for {name}")
    for idx, level in enumerate(levels, start=1):
        console.print_stage(idx, level)
        for job_name in level:
            for inst in expand(by_name[job_name]):
                console.print_instance(inst.label, [t.name for t in inst.template.tasks])


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW_FILE}, then the built-in crate workflow)")
@event_options
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--secret-env", default=None, help="Env var holding the publish credential (default: PUBLISH_SECRET)")
@click.option("--repo-root", default=".", show_default=True, help="Directory tasks run in")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the per-job report as JSON")
@click.pass_context
def run(ctx, workflow, main_branch, event_type, ref, pr_action, base_ref, from_github_env, workers, secret_env, repo_root, as_json):
    """Run the pipeline for an event."""
    console = get_console()
    if as_json:
        # keep stdout parseable
        console.quiet = True
    settings = load_settings().with_overrides(
        main_branch=main_branch,
        max_workers=workers,
        secret_env=secret_env,
    )

    jobs, name = _load_or_exit(workflow)

    try:
        event = _event_from_options(settings, event_type, ref, pr_action, base_ref, from_github_env)
    except (ValueError, subprocess.CalledProcessError, FileNotFoundError) as e:
        console.print_error(
            "Could not determine event",
            str(e),
            suggestion="Pass the event explicitly:\n  releaseci run --event push --ref refs/heads/main",
        )
        sys.exit(EXIT_FAILED)

    cancel = CancelToken()
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.cancel())
    try:
        result = run_pipeline(
            jobs,
            event,
            settings=settings,
            repo_root=repo_root,
            cancel=cancel,
            workflow_name=name,
            console=console,
        )
    except WorkflowError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(EXIT_INVALID_WORKFLOW)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)
    finally:
        signal.signal(signal.SIGTERM, previous)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    elif result.status != "not-applicable":
        console.print_results(result)

    sys.exit(result.exit_code)


def main(argv: Optional[List[str]] = None) -> None:
    cli(args=argv)


if __name__ == "__main__":
    main()
