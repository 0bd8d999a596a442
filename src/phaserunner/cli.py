"""CLI entrypoint for phase-runner.

The runner works on one "project repo": the trunk checkout whose phases are
built. Phase worktrees are created as sibling directories of that checkout,
and every event is appended to the project's run log.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import RunnerConfig
from .errors import FatalSetupError
from .orchestrator import PhaseOrchestrator, preflight
from .run_logger import RunLogger

EXIT_INTERRUPTED = 130

# Initialize Typer app
app = typer.Typer(
    name="phase-runner",
    help="Drive a coding agent through ordered build phases with PRs, CI watch and auto-merge.",
    add_completion=False,
)

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Configure console logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level; otherwise use level.
        level: Log level name from configuration.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"phase-runner version {__version__}")
        raise typer.Exit()


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt


def load_config(repo: Path, config_file: Optional[Path]) -> RunnerConfig:
    """Resolve the project repo and load its validated configuration."""
    repo_path = repo.resolve()
    if not repo_path.exists():
        console.print(f"[red]Error:[/red] Project repository does not exist: {repo_path}")
        raise typer.Exit(1)

    try:
        config = RunnerConfig.from_env(repo_path, config_file.resolve() if config_file else None)
    except FatalSetupError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)
    return config


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Drive a coding agent through ordered build phases."""
    pass


@app.command()
def run(
    start_phase: Optional[str] = typer.Argument(
        None,
        help="Phase to start from (default: the first phase). Earlier phases are not run.",
    ),
    max_iterations: Optional[int] = typer.Argument(
        None,
        min=1,
        help="Override the agent iteration budget of every phase.",
    ),
    repo: Path = typer.Option(
        Path.cwd(),
        "--repo",
        "-r",
        help="Path to the project repository (trunk checkout).",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the phases file (default: config/phases.yaml in the repo).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose output.",
    ),
) -> None:
    """Run every phase from START_PHASE onward.

    Each phase gets a fresh worktree and branch, runs the coding agent, opens
    a pull request, waits for CI (auto-fixing formatting and lint failures),
    merges and syncs trunk. A failing phase is skipped and the run continues.

    Exit codes: 0 when at least one phase completed (or none failed), 1 when
    every phase was skipped or the run could not start, 130 on interrupt.

    Examples:
        phase-runner run
        phase-runner run phase3
        phase-runner run phase2 25
    """
    config = load_config(repo, config_file)
    setup_logging(verbose, config.log_level)

    if start_phase is not None:
        try:
            config.phase_index(start_phase)
        except FatalSetupError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    signal.signal(signal.SIGTERM, _raise_interrupt)
    orchestrator: Optional[PhaseOrchestrator] = None

    with RunLogger(config.resolved_log_file) as run_logger:
        try:
            preflight(config)
            orchestrator = PhaseOrchestrator(config, run_logger=run_logger)
            summary = orchestrator.run(start_phase, max_iterations)
        except FatalSetupError as e:
            logger.error(f"FATAL: {e}")
            raise typer.Exit(1)
        except KeyboardInterrupt:
            console.print()
            if orchestrator is not None:
                orchestrator.handle_interrupt()
            else:
                logger.warning("Interrupted by user.")
            raise typer.Exit(EXIT_INTERRUPTED)

    raise typer.Exit(summary.exit_code)


@app.command("phases")
def list_phases(
    repo: Path = typer.Option(
        Path.cwd(),
        "--repo",
        "-r",
        help="Path to the project repository.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the phases file.",
    ),
) -> None:
    """List configured phases in run order."""
    config = load_config(repo, config_file)

    table = Table(title="Phases")
    table.add_column("ID", style="cyan")
    table.add_column("Branch")
    table.add_column("Iterations", justify="right")
    table.add_column("Description")
    table.add_column("Task list", style="dim")

    for phase in config.phases:
        task_list = phase.task_list_path(config.repo_path)
        marker = "" if task_list.exists() else " (missing)"
        table.add_row(
            phase.id,
            phase.branch,
            str(phase.max_iterations),
            phase.description,
            f"{task_list.relative_to(config.repo_path)}{marker}",
        )

    console.print(table)
