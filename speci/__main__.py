"""Entry point for the speci CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from speci.config.loader import create_default_config, find_config_file, resolve_path
from speci.core.clean import clean_project
from speci.core.cleanup import SignalHandlers
from speci.core.context import RunContext
from speci.core.orchestrator import Orchestrator
from speci.core.workflow_phases import AgentPhase, RunOutcome, describe_action
from speci.errors import AgentPhaseError, GateExhaustedError, SpeciError
from speci.utils import excerpt_lines

console = Console()


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project",
        type=Path,
        default=None,
        help="Project directory (default: current directory)",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )
    common.add_argument(
        "--debug",
        action="store_true",
        help="Debug mode",
    )

    parser = argparse.ArgumentParser(
        prog="speci",
        description="Spec-driven development loop for AI coding agents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Run the implementation loop"
    )
    run_parser.add_argument(
        "--max-iterations",
        type=positive_int,
        help="Override loop.max_iterations",
    )
    run_parser.add_argument(
        "--force",
        action="store_true",
        help="Override an existing lock",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing",
    )

    yolo_parser = subparsers.add_parser(
        "yolo", parents=[common], help="Plan, generate tasks and run the loop"
    )
    yolo_parser.add_argument("-p", "--prompt", required=True, help="What to build")
    yolo_parser.add_argument("--max-iterations", type=positive_int, help="Override loop.max_iterations")
    yolo_parser.add_argument("--force", action="store_true", help="Override an existing lock")

    plan_parser = subparsers.add_parser(
        "plan", parents=[common], help="Run the planning agent"
    )
    plan_parser.add_argument("-p", "--prompt", required=True, help="What to plan")
    plan_parser.add_argument("--force", action="store_true", help="Override an existing lock")

    task_parser = subparsers.add_parser(
        "task", parents=[common], help="Generate tasks from the plan"
    )
    task_parser.add_argument("-p", "--prompt", help="Extra instructions for the task agent")
    task_parser.add_argument("--force", action="store_true", help="Override an existing lock")

    refactor_parser = subparsers.add_parser(
        "refactor", parents=[common], help="Run the refactor agent"
    )
    refactor_parser.add_argument("-p", "--prompt", help="Refactoring focus")
    refactor_parser.add_argument("--force", action="store_true", help="Override an existing lock")

    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show progress and lock status"
    )
    status_parser.add_argument("--json", action="store_true", help="Output JSON")

    subparsers.add_parser("unlock", parents=[common], help="Remove the project lock")
    subparsers.add_parser("init", parents=[common], help="Create speci.config.json")
    subparsers.add_parser(
        "clean", parents=[common], help="Delete generated task files and the progress file"
    )

    return parser.parse_args(argv)


def _load_context(project: Path | None) -> RunContext:
    """Load config for the project; ``debug: true`` in the file enables debug logging."""
    context = RunContext.load(project)
    if context.settings.debug:
        logging.getLogger("speci").setLevel(logging.DEBUG)
    return context


async def _supervise(
    context: RunContext,
    coro: Awaitable[Any],
) -> tuple[Any, int | None]:
    """
    Await ``coro`` with SIGINT/SIGTERM cancelling it.

    Returns:
        The result and None, or None and the signal exit code if interrupted.
    """
    handlers = SignalHandlers(context.children)
    task = asyncio.ensure_future(coro)
    handlers.install(task)
    try:
        return await task, None
    except asyncio.CancelledError:
        return None, handlers.exit_code or 130
    finally:
        handlers.remove()


def _report_error(error: SpeciError) -> int:
    console.print(
        f"[bold red]Error {escape(f'[{error.code}]')}:[/bold red] {escape(str(error))}",
        highlight=False,
    )

    if isinstance(error, GateExhaustedError):
        console.print(error.gate_result.to_summary(), highlight=False)
        first = error.gate_result.first_failure
        if first is not None:
            for line in excerpt_lines(first.failure_message):
                console.print(f"    {line}", highlight=False, markup=False)
    elif isinstance(error, AgentPhaseError) and error.failure.exit_code == 127:
        console.print(
            "Install the agent CLI or set copilot.executable in speci.config.json.",
            highlight=False,
        )
    return error.exit_code


def _print_outcome(outcome: RunOutcome) -> int:
    if outcome.completed:
        console.print("\n[bold green]All tasks complete![/bold green]")
    else:
        console.print("\n[yellow]Stopped at the iteration limit with work remaining.[/yellow]")
    console.print(f"Iterations: {outcome.iterations}")
    if outcome.phases_run:
        console.print(f"Phases run: {', '.join(outcome.phases_run)}")
    return 0 if outcome.completed else 1


def _dry_run(context: RunContext, max_iterations: int | None) -> int:
    settings = context.settings
    state = context.progress.get_state()

    console.print("[bold]Dry run[/bold] - no agents will be invoked")
    console.print(f"Project: {context.project_root}")
    console.print(f"State: {state.value}")
    console.print(f"Action: {describe_action(state)}")
    console.print(f"Max iterations: {max_iterations or settings.loop.max_iterations}")
    console.print(
        f"Gate commands ({settings.gate.strategy}): "
        f"{', '.join(settings.gate.commands) or '(none)'}",
        highlight=False,
    )
    console.print(f"Max fix attempts: {settings.gate.max_fix_attempts}")
    agent_status = "found" if context.adapter.is_available else "[red]not found[/red]"
    console.print(f"Agent: {settings.copilot.executable} ({agent_status})")
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the implementation loop."""
    context = _load_context(args.project)
    if args.dry_run:
        return _dry_run(context, args.max_iterations)

    orchestrator = Orchestrator(context)
    outcome, interrupted = await _supervise(
        context,
        orchestrator.run(max_iterations=args.max_iterations, force=args.force),
    )
    if interrupted is not None:
        return interrupted
    return _print_outcome(outcome)


async def cmd_yolo(args: argparse.Namespace) -> int:
    """Plan, generate tasks and run the loop in one session."""
    context = _load_context(args.project)
    orchestrator = Orchestrator(context)
    outcome, interrupted = await _supervise(
        context,
        orchestrator.pipeline(args.prompt, force=args.force, max_iterations=args.max_iterations),
    )
    if interrupted is not None:
        return interrupted
    return _print_outcome(outcome)


async def cmd_phase(args: argparse.Namespace, phase: AgentPhase) -> int:
    """Run one agent phase (plan, task, refactor)."""
    context = _load_context(args.project)
    orchestrator = Orchestrator(context)
    _, interrupted = await _supervise(
        context,
        orchestrator.run_phase(phase, args.prompt, force=args.force),
    )
    if interrupted is not None:
        return interrupted
    console.print(f"[green]{phase.value} agent finished.[/green]")
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show progress state, task stats and lock status."""
    context = _load_context(args.project)
    state = context.progress.get_state()
    stats = context.progress.get_task_stats()
    current = context.progress.get_current_task()
    lock = context.lock.inspect()

    if args.json:
        data = {
            "state": state.value,
            "stats": {
                "total": stats.total,
                "completed": stats.completed,
                "remaining": stats.remaining,
                "inReview": stats.in_review,
                "blocked": stats.blocked,
            },
            "currentTask": (
                {"id": current.id, "title": current.title, "status": current.status}
                if current
                else None
            ),
            "lock": lock.to_dict(),
        }
        print(json.dumps(data, indent=2))
        return 0

    table = Table(title="speci status")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("State", state.value)
    table.add_row("Next action", describe_action(state))
    table.add_row("Tasks", f"{stats.completed}/{stats.total} complete")
    table.add_row("Remaining", str(stats.remaining))
    table.add_row("In review", str(stats.in_review))
    table.add_row("Blocked", str(stats.blocked))
    table.add_row("Current task", f"{current.id} - {current.title}" if current else "-")

    if not lock.is_locked:
        table.add_row("Lock", "free")
    elif lock.pid is None:
        table.add_row("Lock", "held (unreadable lock file)")
    else:
        stale = " [stale]" if lock.is_stale else ""
        table.add_row(
            "Lock",
            f"PID {lock.pid} ({lock.command}), running {lock.elapsed}{stale}",
        )

    console.print(table)
    return 0


async def cmd_unlock(args: argparse.Namespace) -> int:
    """Force-release the project lock."""
    context = _load_context(args.project)
    info = context.lock.inspect()
    if not info.is_locked:
        console.print("No lock held.")
        return 0

    if info.pid is not None and not info.is_stale:
        console.print(
            f"[yellow]Warning:[/yellow] PID {info.pid} appears to still be running "
            f"({info.command}, {info.elapsed})."
        )
    context.lock.force_release()
    console.print(f"Removed lock {context.lock.lock_path}")
    return 0


async def cmd_init(args: argparse.Namespace) -> int:
    """Create speci.config.json and the project directories."""
    project_path = (args.project or Path.cwd()).resolve()

    existing = find_config_file(project_path)
    if existing is not None and existing.parent == project_path:
        console.print(f"Config file already exists: {existing}")
        return 0

    config_path = create_default_config(project_path)
    context = _load_context(project_path)
    resolve_path(context.project_root, context.settings.paths.tasks).mkdir(
        parents=True, exist_ok=True
    )
    resolve_path(context.project_root, context.settings.paths.logs).mkdir(
        parents=True, exist_ok=True
    )

    console.print(f"Created config file: {config_path}")
    console.print("\nEdit this file to customize gate commands and agent models.")
    return 0


async def cmd_clean(args: argparse.Namespace) -> int:
    """Delete generated task files and the progress file."""
    context = _load_context(args.project)
    deleted = clean_project(context.project_root, context.settings.paths, context.lock)
    if deleted:
        console.print(f"[green]Cleaned {len(deleted)} file(s).[/green]")
    else:
        console.print("Nothing to clean.")
    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    verbose = getattr(args, "verbose", False)
    debug = getattr(args, "debug", False)
    setup_logging(verbose=verbose, debug=debug)

    if args.command is None:
        print("Usage: speci run [--max-iterations N] [--force] [--dry-run]")
        print("       speci yolo -p 'What to build'")
        print("       speci status | unlock | init | clean")
        return 2

    handlers = {
        "run": cmd_run,
        "yolo": cmd_yolo,
        "plan": lambda a: cmd_phase(a, AgentPhase.PLAN),
        "task": lambda a: cmd_phase(a, AgentPhase.TASK),
        "refactor": lambda a: cmd_phase(a, AgentPhase.REFACTOR),
        "status": cmd_status,
        "unlock": cmd_unlock,
        "init": cmd_init,
        "clean": cmd_clean,
    }

    try:
        return await handlers[args.command](args)
    except SpeciError as e:
        if debug:
            logging.getLogger(__name__).debug("Command failed", exc_info=True)
        return _report_error(e)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}", highlight=False)
        if debug:
            import traceback
            traceback.print_exc()
        return 1


def cli_main() -> None:
    """CLI entry point (synchronous wrapper)."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
