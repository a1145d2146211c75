"""
Run reporting.

Accumulates per-item outcomes into a RunSummary, decides the final
status, writes the plain-text run report and prints the summary table.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.table import Table

from nas_sync.archive import ArchiveEntry, format_size

logger = logging.getLogger(__name__)

console = Console()

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
REPORT_GLOB = "*_summary_*.txt"


class Outcome(Enum):
    """Result of syncing one item."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(Enum):
    FULL_SUCCESS = "FULL_SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    TOTAL_FAILURE = "TOTAL_FAILURE"

    @property
    def exit_code(self) -> int:
        return 1 if self is RunStatus.TOTAL_FAILURE else 0


@dataclass
class RunSummary:
    """Outcome of one execution."""

    job: str
    run_timestamp: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)
    duration: float = 0.0
    status: Optional[RunStatus] = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    @property
    def total(self) -> int:
        """Items considered (fetch failures count as one failed item each)."""
        return self.succeeded + self.skipped + self.failed

    @property
    def failed_identifiers(self) -> list[str]:
        return [identifier for identifier, _ in self.failures]

    def classify(self) -> RunStatus:
        """
        Final status rule.

        Nothing failed -> FULL_SUCCESS (also for an empty collection).
        Some failed, some succeeded -> PARTIAL_SUCCESS.
        Some failed, none succeeded -> TOTAL_FAILURE (this includes an
        unreachable API, which is recorded as a fetch failure).
        """
        if self.failed == 0:
            return RunStatus.FULL_SUCCESS
        if self.succeeded > 0:
            return RunStatus.PARTIAL_SUCCESS
        return RunStatus.TOTAL_FAILURE


class RunReporter:
    """Builds a RunSummary while the engine runs."""

    def __init__(self, job: str, run_timestamp: str, clock: Callable[[], float] = time.monotonic):
        self.summary = RunSummary(job=job, run_timestamp=run_timestamp)
        self._clock = clock
        self._started = clock()

    def record(self, identifier: str, outcome: Outcome, reason: Optional[str] = None) -> None:
        if outcome is Outcome.CREATED:
            self.summary.created += 1
        elif outcome is Outcome.UPDATED:
            self.summary.updated += 1
        elif outcome is Outcome.SKIPPED:
            self.summary.skipped += 1
        else:
            self.summary.failures.append((identifier, reason or "unknown error"))

    def record_fetch_failure(self, source: str, reason: str) -> None:
        self.summary.failures.append((source, reason))

    def finalize(self) -> RunSummary:
        """Stamp duration and status; safe to call more than once."""
        self.summary.duration = self._clock() - self._started
        self.summary.status = self.summary.classify()

        if self.summary.status is RunStatus.FULL_SUCCESS:
            log = logger.info
        elif self.summary.status is RunStatus.PARTIAL_SUCCESS:
            log = logger.warning
        else:
            log = logger.error
        log(
            "%s finished: %s (created %d, updated %d, skipped %d, failed %d, %.1fs)",
            self.summary.job,
            self.summary.status.value,
            self.summary.created,
            self.summary.updated,
            self.summary.skipped,
            self.summary.failed,
            self.summary.duration,
        )
        for identifier, reason in self.summary.failures:
            logger.error("  failed: %s (%s)", identifier, reason)
        return self.summary


def describe_inventory(inventory: list[ArchiveEntry]) -> str:
    """One-line archive stats for the operational log."""
    if not inventory:
        return "Archive is empty"

    total = sum(entry.size_bytes for entry in inventory)
    stats = f"Files: {len(inventory)} | Total size: {format_size(total)}"

    counted = [entry for entry in inventory if entry.entries is not None]
    if counted:
        largest = max(counted, key=lambda entry: entry.size_bytes)
        stats += f" | Example: {largest.name} has {largest.entries} entries"
    return stats


def render_report(
    summary: RunSummary,
    title: str,
    archive_root: Path,
    inventory: list[ArchiveEntry],
) -> str:
    """Plain-text body of a run report (also used as the notification body)."""
    lines = [
        f"=== {title.upper()} SUMMARY ===",
        f"Date: {summary.run_timestamp}",
        f"Status: {summary.status.value if summary.status else 'UNKNOWN'}",
        f"Duration: {summary.duration:.1f}s",
        "",
        f"Items considered: {summary.total}",
        f"  created: {summary.created}",
        f"  updated: {summary.updated}",
        f"  skipped: {summary.skipped}",
        f"  failed:  {summary.failed}",
    ]

    if summary.failures:
        lines.append("")
        lines.append("Failures:")
        for identifier, reason in summary.failures:
            lines.append(f"  - {identifier}: {reason}")

    lines.append("")
    lines.append(f"Archive contents ({archive_root}):")
    for entry in inventory:
        if entry.entries is not None:
            lines.append(f"{entry.name:<20}: {entry.entries} entries ({format_size(entry.size_bytes)})")
        else:
            lines.append(f"{entry.name:<20}: {format_size(entry.size_bytes)}")
    if not inventory:
        lines.append("(empty)")

    lines.append("")
    lines.append(f"Total archive size: {format_size(sum(e.size_bytes for e in inventory))}")
    lines.append("")
    lines.append(f"Report written at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return "\n".join(lines) + "\n"


def write_report(report_dir: Path, summary: RunSummary, body: str) -> Path:
    """
    Persist a run report named after the job and run timestamp.

    Returns:
        Path to the report file.
    """
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / f"{summary.job}_summary_{summary.run_timestamp}.txt"
    path.write_text(body, encoding="utf-8")
    logger.info("Run report created: %s", path)
    return path


def cleanup_old_reports(report_dir: Path, keep_days: int, now: Optional[datetime] = None) -> int:
    """
    Delete run reports older than keep_days. Archive data is never touched.

    Returns:
        Number of reports deleted.
    """
    if keep_days <= 0 or not report_dir.is_dir():
        return 0

    cutoff = ((now or datetime.now()) - timedelta(days=keep_days)).timestamp()
    deleted = 0
    for path in report_dir.glob(REPORT_GLOB):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                deleted += 1
        except OSError as e:
            logger.warning("Could not remove old report %s: %s", path, e)

    if deleted:
        logger.info("Cleaned up %d old report file(s)", deleted)
    return deleted


def should_notify(status: RunStatus, success_mode: str, today: Optional[datetime] = None) -> bool:
    """
    Whether a run with this status sends mail.

    Failures always notify. Full successes follow success_mode:
    "always", "weekly" (Mondays only) or "never".
    """
    if status is not RunStatus.FULL_SUCCESS:
        return True
    if success_mode == "always":
        return True
    if success_mode == "weekly":
        return (today or datetime.now()).weekday() == 0
    return False


def notification_subject(title: str, status: RunStatus) -> str:
    return {
        RunStatus.FULL_SUCCESS: f"{title} - Success",
        RunStatus.PARTIAL_SUCCESS: f"{title} - Partial Success",
        RunStatus.TOTAL_FAILURE: f"{title} - ERROR",
    }[status]


def print_summary(summary: RunSummary) -> None:
    """Print run summary."""
    console.print("\n" + "=" * 50)
    console.print(f"[bold]{summary.job} Summary[/bold]")
    console.print("=" * 50)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Status", summary.status.value if summary.status else "UNKNOWN")
    table.add_row("Created", str(summary.created))
    table.add_row("Updated", str(summary.updated))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Duration", f"{summary.duration:.1f}s")

    console.print(table)

    if summary.failures:
        console.print(f"\n[red]Failed:[/red] {', '.join(summary.failed_identifiers)}")

    console.print("")
