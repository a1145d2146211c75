"""
NAS Sync CLI

Usage:
    nas-sync github                  # Mirror GitHub repositories
    nas-sync github --include-forks  # ...including forks
    nas-sync paymo                   # Archive Paymo data
    nas-sync all                     # Run every job (cron entry point)
    nas-sync status                  # Show archive contents
    nas-sync --debug paymo           # Verbose logging
"""

from dataclasses import replace
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from nas_sync import __version__
from nas_sync.archive import HistoryArchive, MirrorArchive, format_size
from nas_sync.config import RETENTION_POLICIES, Config
from nas_sync.errors import ConfigError
from nas_sync.jobs import GitHubBackupJob, PaymoBackupJob
from nas_sync.logs import setup_logging
from nas_sync.reporter import print_summary
from nas_sync.runner import JobResult, run_all, run_job

console = Console()


def _load_config(ctx: click.Context, **overrides) -> Config:
    """Build the run's Config from the environment plus CLI overrides."""
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if ctx.obj.get("debug"):
        overrides["debug"] = True

    try:
        return replace(Config.from_env(ctx.obj.get("env_file")), **overrides)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("\n[dim]Check your environment variables or .env file.[/dim]")
        ctx.exit(1)


def _finish(ctx: click.Context, result: JobResult) -> None:
    if result.summary is not None:
        print_summary(result.summary)
    elif result.skipped:
        console.print("[yellow]Another run is in progress; nothing to do.[/yellow]")
    ctx.exit(result.exit_code)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.option(
    "--env-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Load settings from this .env file",
)
@click.pass_context
def cli(ctx, debug: bool, env_file: Optional[Path]):
    """
    NAS Sync

    Backs up GitHub repositories and Paymo data to local storage.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["env_file"] = env_file


@cli.command()
@click.option(
    "--include-forks/--exclude-forks",
    default=None,
    help="Override INCLUDE_FORKS for this run",
)
@click.pass_context
def github(ctx, include_forks: Optional[bool]):
    """Clone or fast-forward every GitHub repository."""
    config = _load_config(ctx, include_forks=include_forks)
    setup_logging(config)
    _finish(ctx, run_job(GitHubBackupJob(config)))


@cli.command()
@click.option(
    "--retention",
    type=click.Choice(RETENTION_POLICIES),
    default=None,
    help="Override HISTORY_RETENTION for this run",
)
@click.pass_context
def paymo(ctx, retention: Optional[str]):
    """Download every Paymo resource into its history file."""
    config = _load_config(ctx, history_retention=retention)
    setup_logging(config)
    _finish(ctx, run_job(PaymoBackupJob(config)))


@cli.command("all")
@click.pass_context
def run_all_jobs(ctx):
    """Run every backup job, continuing past failures."""
    config = _load_config(ctx)
    setup_logging(config)

    results = run_all([GitHubBackupJob(config), PaymoBackupJob(config)])
    for result in results:
        if result.summary is not None:
            print_summary(result.summary)

    ctx.exit(1 if any(result.exit_code != 0 for result in results) else 0)


@cli.command()
@click.pass_context
def status(ctx):
    """Show what is currently archived."""
    config = _load_config(ctx)

    mirrors = MirrorArchive(config).inventory()
    table = Table(title=f"Mirrored Repositories ({config.github_backup_dir})")
    table.add_column("Repository", style="cyan")
    table.add_column("Size", style="green", justify="right")
    for entry in mirrors:
        table.add_row(entry.name, format_size(entry.size_bytes))
    console.print(table)

    histories = HistoryArchive(config, run_timestamp="").inventory()
    table = Table(title=f"History Files ({config.paymo_history_dir})")
    table.add_column("Resource", style="cyan")
    table.add_column("Entries", style="yellow", justify="right")
    table.add_column("Size", style="green", justify="right")
    for entry in histories:
        entries = "?" if entry.entries is None else str(entry.entries)
        table.add_row(entry.name, entries, format_size(entry.size_bytes))
    console.print(table)

    if not mirrors and not histories:
        console.print("[yellow]Nothing has been archived yet.[/yellow]")


@cli.command()
def version():
    """Show version information."""
    console.print(f"NAS Sync v{__version__}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
