# cli.py
from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path

import click

from . import settings
from .environment import LocalEnvironment
from .errors import ValidationError
from .loader import load_definition
from .model import Status, Workflow
from .orchestrator import Orchestrator, plan
from .reporting import ConsoleReporter
from .ui.console import Console, get_console, set_console

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DEFINITION = 2
EXIT_CANCELLED = 130

EXIT_CODES = {
    Status.SUCCEEDED: EXIT_OK,
    Status.FAILED: EXIT_FAILED,
    Status.CANCELLED: EXIT_CANCELLED,
}


def _load(path: str) -> Workflow:
    """Load a definition or exit with EXIT_DEFINITION."""
    console = get_console()
    try:
        return load_definition(path)
    except FileNotFoundError as e:
        console.print_error(
            "Workflow file not found",
            str(e),
            suggestion="Specify an existing definition:\n  matrixci run .github/workflows/ci.yml",
        )
    except ValidationError as e:
        console.print_error("Invalid workflow", str(e))
    except Exception as e:
        # a Python definition file can raise anything while it is evaluated
        console.print_error("Failed to load workflow", f"Could not load {path}", details=[str(e)])
        if console.debug:
            console.print_exception(e)
    sys.exit(EXIT_DEFINITION)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run matrix CI workflows locally."""
    set_console(Console(debug=debug))
    logging.basicConfig(
        level=logging.DEBUG if debug else settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("definition", type=click.Path(dir_okay=False))
@click.option("--event", default=settings.DEFAULT_EVENT, show_default=True, help="Triggering event name")
@click.option(
    "--concurrency", "-j",
    default=settings.CONCURRENCY,
    type=click.IntRange(min=1),
    show_default=True,
    help="Maximum number of job instances running at once",
)
@click.option("--workdir", default=".", type=click.Path(file_okay=False), help="Checkout directory steps run in")
def run(definition, event, concurrency, workdir):
    """Run a workflow definition."""
    console = get_console()
    workflow = _load(definition)

    orchestrator = Orchestrator(
        LocalEnvironment(workdir),
        concurrency=concurrency,
        reporter=ConsoleReporter(console),
    )

    def _on_sigint(signum, frame):
        if orchestrator.handle.cancelled:
            raise KeyboardInterrupt
        console.print_info("\nCancelling run (press Ctrl-C again to abort)...")
        orchestrator.cancel()

    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, _on_sigint)

    try:
        result = orchestrator.run(workflow, event)
    except ValidationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(EXIT_DEFINITION)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    sys.exit(EXIT_CODES.get(result.status, EXIT_FAILED))


@cli.command(name="plan")
@click.argument("definition", type=click.Path(dir_okay=False))
@click.option("--event", default=None, help="Only plan if the workflow is triggered by this event")
def plan_cmd(definition, event):
    """Show stages and job instances without running anything."""
    console = get_console()
    workflow = _load(definition)
    if event is not None and not workflow.triggered_by(event):
        console.print_info(f"Workflow '{workflow.name}' is not triggered by '{event}'")
        sys.exit(EXIT_DEFINITION)

    console.print_header(f"{workflow.name} (on: {', '.join(sorted(workflow.triggers))})")
    console.print_plan(plan(workflow))


@cli.command()
@click.argument("definition", type=click.Path(dir_okay=False))
def validate(definition):
    """Check a workflow definition and exit."""
    workflow = _load(definition)
    count = sum(len(stage_jobs) for stage in plan(workflow) for stage_jobs in stage.values())
    get_console().print_info(f"{Path(definition).name}: OK ({len(workflow.jobs)} jobs, {count} instances)")


if __name__ == "__main__":
    cli()
