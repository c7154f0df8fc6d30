"""
REPOSYNC CLI — The Interface

  reposync sync --repo <path>                   (one manual cycle)
  reposync watch --repo <path>                  (timer-driven, until Ctrl-C)
  reposync init --repo <path> --remote <url>    (bootstrap a plain directory)

Plus utilities:
  - reposync status       (credentials, git, effective config)
  - reposync history      (recent sessions, statistics)
  - reposync conflicts    (earlier conflicts touching files)
"""

from __future__ import annotations

import shutil
import threading
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reposync.identity import __codename__, __tagline__, __version__, BANNER
from reposync.config_loader import ReposyncConfig, load_config, validate_credentials
from reposync.controller import Controller
from reposync.engine import MergeConflictError
from reposync.errors import ReposyncError
from reposync.fanout import ProjectPathBroadcaster
from reposync.memory import MemoryStore

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".reposync" / ".env")

app = typer.Typer(
    name="reposync",
    help=f"{__codename__} — {__tagline__}\nUnattended git synchronization.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Components that follow the active project. The git sync controller
# joins for the duration of each command.
broadcaster = ProjectPathBroadcaster()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_cyan]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def sync(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the repository to sync"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config.yaml override"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one sync cycle: pull, commit local changes, push."""
    _print_banner()
    config = load_config(config_file)
    _configure_logging(verbose, config)

    controller = Controller.from_config(config)
    try:
        _activate_project(controller, repo)
        controller.start(run_immediately=False, schedule=False)
        result = controller.sync_repository()
    except MergeConflictError as e:
        _print_conflict(e)
        raise typer.Exit(1)
    except ReposyncError as e:
        console.print(f"[red]💥 Sync failed: {e}[/]")
        raise typer.Exit(1)
    finally:
        controller.stop()

    if not result.has_changes:
        console.print("[green]✅ No local changes. Project is up to date.[/]")
        return

    table = Table(title="Sync Result", border_style="cyan")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Commit", result.commit_message or "—")
    table.add_row("Committed", "✓" if result.committed else "✗ (nothing to commit)")
    table.add_row("Pushed", "✓" if result.pushed else "✗")
    table.add_row(
        "Changes",
        f"+{result.changes.added} ~{result.changes.modified} -{result.changes.deleted}",
    )
    if result.recovery_pulls:
        table.add_row("Recovery pulls", str(result.recovery_pulls))
    console.print(table)


@app.command()
def init(
    repo: Path = typer.Option(..., "--repo", "-r", help="Directory to turn into a repository"),
    remote: Optional[str] = typer.Option(None, "--remote", help="Remote URL to push to"),
    branch: str = typer.Option("main", "--branch", "-b", help="Branch name"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Bootstrap a plain directory: init, commit everything, push upstream."""
    _print_banner()
    config = load_config(config_file)
    _configure_logging(verbose, config)

    controller = Controller.from_config(config)
    try:
        _activate_project(controller, repo)
        controller.start(run_immediately=False, schedule=False)
        outcome = controller.init_repository(remote, branch)
    except ReposyncError as e:
        console.print(f"[red]💥 Init failed: {e}[/]")
        raise typer.Exit(1)
    finally:
        controller.stop()

    pushed = "and pushed " if outcome.get("pushed") else ""
    console.print(f"[green]✅ Repository initialized {pushed}on branch {branch}[/]")


@app.command()
def watch(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the repository to keep in sync"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Minutes between cycles"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Keep a repository in sync on a timer until interrupted."""
    _print_banner()
    config = load_config(config_file)
    if interval is not None:
        config.sync.interval_minutes = interval
    _configure_logging(verbose, config)

    controller = Controller.from_config(config)
    try:
        _activate_project(controller, repo)
    except ReposyncError as e:
        console.print(f"[red]💥 {e}[/]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold]Repo:[/] {repo.resolve()}\n"
        f"[bold]Every:[/] {config.sync.interval_minutes:g} minutes",
        title=f"⟳ {__codename__}",
        subtitle="Ctrl-C to stop",
        border_style="bright_cyan",
    ))

    controller.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]⟳ Interrupted. Stopping...[/]")
    finally:
        controller.stop()


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Check REPOSYNC configuration and readiness."""
    _print_banner()

    keys = validate_credentials()
    key_table = Table(title="Git Credentials", border_style="cyan")
    key_table.add_column("Variable")
    key_table.add_column("Status")

    for key, available in keys.items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)

    console.print(key_table)

    config = load_config(config_file)
    found = shutil.which(config.sync.git_binary)
    git_str = f"[green]✓ {found}[/]" if found else "[red]✗ Not found[/]"
    console.print(f"\n[bold]Git:[/] {git_str}")

    console.print(f"\n[bold]Sync:[/]")
    console.print(f"  Interval:         {config.sync.interval_minutes:g} min")
    console.print(f"  Push retries:     {config.sync.max_push_retries}")
    console.print(f"  Command timeout:  {config.sync.command_timeout:g}s")

    console.print(f"\n[bold]Storage:[/]")
    console.print(f"  Memory:  {config.memory_dir / (config.memory.agent_name + '.json')}")
    reporting = config.issues_dir if config.reporting.enabled else "disabled"
    console.print(f"  Issues:  {reporting}")


@app.command()
def history(
    count: int = typer.Option(10, "--count", "-n", help="Number of sessions to show"),
    stats: bool = typer.Option(False, "--stats", "-s", help="Show aggregate statistics"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """View sync sessions and statistics."""
    _print_banner()
    memory = _open_memory(load_config(config_file))

    if stats:
        s = memory.stats()
        if s["actions_stored"] == 0:
            console.print("[dim]No history yet.[/]")
            return

        stats_table = Table(title=f"{__codename__} Statistics", border_style="cyan")
        stats_table.add_column("Metric")
        stats_table.add_column("Value")
        stats_table.add_row("Sessions", str(s["sessions_stored"]))
        stats_table.add_row("Actions", str(s["actions_stored"]))
        stats_table.add_row("Success rate", f"{s['success_rate']}%")
        stats_table.add_row("Last success", s["last_success"] or "—")
        stats_table.add_row("Last failure", s["last_failure"] or "—")
        console.print(stats_table)
        return

    sessions = memory.recent_sessions(count)
    if not sessions:
        console.print("[dim]No history yet. Run a sync first.[/]")
        return

    table = Table(title=f"Recent Sessions (last {count})", border_style="cyan")
    table.add_column("Started", style="dim")
    table.add_column("Session")
    table.add_column("Status")
    table.add_column("Actions")
    table.add_column("Failures")

    for session in sessions:
        failures = sum(1 for a in session.actions if not a.succeeded)
        color = "green" if session.status == "completed" else "yellow"
        fail_str = f"[red]{failures}[/]" if failures else "0"
        table.add_row(
            session.start_time[:19],
            session.id,
            f"[{color}]{session.status}[/]",
            str(len(session.actions)),
            fail_str,
        )

    console.print(table)


@app.command()
def conflicts(
    files: List[str] = typer.Argument(..., help="File paths to look up"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Show earlier merge conflicts that touched any of the given files."""
    memory = _open_memory(load_config(config_file))
    matches = memory.find_conflicts_touching(files)

    if not matches:
        console.print("[green]No earlier conflicts on these files.[/]")
        return

    table = Table(title="Earlier Conflicts", border_style="yellow")
    table.add_column("When", style="dim")
    table.add_column("Session")
    table.add_column("Files")
    for match in matches:
        table.add_row(match.timestamp[:19], match.session_id, ", ".join(match.files))
    console.print(table)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _activate_project(controller: Controller, repo: Path) -> None:
    """
    Announce the project to every registered component.

    The controller is registered alongside whatever else lives on
    `broadcaster`; its own rejection aborts the command, anyone
    else's is only reported.
    """
    broadcaster.register("git_sync", controller)
    try:
        outcomes = broadcaster.broadcast(repo)
    finally:
        broadcaster.unregister("git_sync")

    for name, err in outcomes.items():
        if err is None:
            continue
        if name == "git_sync":
            raise err
        console.print(f"[yellow]⚠ {name} rejected {repo}: {err}[/]")


def _open_memory(config: ReposyncConfig) -> MemoryStore:
    return MemoryStore(
        config.memory_dir,
        agent_name=config.memory.agent_name,
        max_sessions=config.memory.max_sessions,
    )


def _print_conflict(error: MergeConflictError) -> None:
    body = "\n".join(f"  ⚔ {f}" for f in error.conflicted_files) or "  (no files listed)"
    if error.previous_conflicts:
        body += f"\n\n[yellow]{len(error.previous_conflicts)} earlier conflict(s) on these files:[/]"
        for prior in error.previous_conflicts:
            body += f"\n  [dim]{prior.timestamp[:19]}[/] {', '.join(prior.files)}"
    console.print(Panel(body, title="Merge conflict", border_style="red"))


def _configure_logging(verbose: bool, config: ReposyncConfig | None = None) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False, markup=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False, markup=False),
            level="WARNING",
            format="{message}",
        )

    if config and config.logging.log_file:
        logger.add(
            Path(config.logging.log_file).expanduser(),
            level=config.logging.level,
            rotation="10 MB",
            retention=5,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<7} | {message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
