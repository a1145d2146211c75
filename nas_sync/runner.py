"""
Run coordination for cron-triggered jobs.

A run goes through, in order:
1. Prerequisites (credentials, binaries, directories, disk space)
2. Run lock (a live holder means this run is a silent no-op)
3. Connectivity check
4. Fetch + sync through the engine
5. Report, notification and report cleanup
6. Lock release (also on exceptions and SIGINT/SIGTERM)
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from nas_sync.engine import MergePolicy, SyncEngine
from nas_sync.errors import AlreadyRunning, ConfigError, PreconditionError
from nas_sync.jobs import BackupJob
from nas_sync.lock import run_lock
from nas_sync.reporter import (
    TIMESTAMP_FORMAT,
    RunReporter,
    RunSummary,
    cleanup_old_reports,
    describe_inventory,
    notification_subject,
    render_report,
    should_notify,
    write_report,
)

logger = logging.getLogger(__name__)

GIGABYTE = 1024 ** 3


@dataclass
class JobResult:
    """What a job run returns to the CLI."""

    exit_code: int
    summary: Optional[RunSummary] = None
    skipped: bool = False


def check_prerequisites(job: BackupJob) -> None:
    """
    Check everything a job needs before it may start.

    Raises:
        ConfigError: If credentials are missing.
        PreconditionError: If a binary is missing or a directory cannot
            be created.
    """
    logger.info("Checking prerequisites...")
    job.check_credentials()

    missing = [binary for binary in job.required_binaries if shutil.which(binary) is None]
    if missing:
        raise PreconditionError(f"Missing dependencies: {', '.join(missing)}")

    for directory in (job.archive_root, job.report_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PreconditionError(f"Failed to create directory {directory}: {e}") from e

    free_gb = shutil.disk_usage(job.archive_root).free / GIGABYTE
    if free_gb < job.config.min_free_space_gb:
        logger.warning("Low disk space: %.1fGB free in %s", free_gb, job.archive_root)
    else:
        logger.info("Disk space check: %.1fGB free", free_gb)


def _notify_precondition_failure(job: BackupJob, error: Exception) -> None:
    job.notifier.send(
        f"{job.title} - Precondition Error",
        f"{job.title} could not start: {error}\nCheck logs at {job.config.log_file}",
    )


def run_job(job: BackupJob, now: Optional[datetime] = None) -> JobResult:
    """
    Run one job end to end.

    Returns:
        JobResult with exit code 0 for full/partial success or an already
        running job, 1 for total failure or an unmet precondition.
    """
    started = now or datetime.now()
    run_timestamp = started.strftime(TIMESTAMP_FORMAT)

    logger.info("=== STARTING %s ===", job.title.upper())
    logger.info("PID: %d", os.getpid())
    for line in job.describe():
        logger.info(line)

    try:
        check_prerequisites(job)
    except (ConfigError, PreconditionError) as e:
        logger.error("Prerequisites not met. Aborting: %s", e)
        _notify_precondition_failure(job, e)
        return JobResult(exit_code=1)

    try:
        with run_lock(job.config.lock_path(job.name)):
            result = _run_locked(job, run_timestamp, started)
    except AlreadyRunning:
        return JobResult(exit_code=0, skipped=True)

    logger.info("=== PROCESS FINISHED (exit code: %d) ===", result.exit_code)
    return result


def _run_locked(job: BackupJob, run_timestamp: str, started: datetime) -> JobResult:
    archive = job.build_archive(run_timestamp)
    logger.info("Pre-run stats: %s", describe_inventory(archive.inventory()))

    try:
        job.check_connectivity()
    except PreconditionError as e:
        logger.error("Cannot proceed without API connectivity: %s", e)
        _notify_precondition_failure(job, e)
        return JobResult(exit_code=1)

    reporter = RunReporter(job.name, run_timestamp)
    engine = SyncEngine(archive, reporter, MergePolicy(include_forks=job.config.include_forks))
    job.sync(engine)
    summary = reporter.finalize()

    inventory = archive.inventory()
    logger.info("Post-run stats: %s", describe_inventory(inventory))

    body = render_report(summary, job.title, archive.root, inventory)
    try:
        write_report(job.report_dir, summary, body)
    except OSError as e:
        logger.error("Failed to write run report: %s", e)

    if should_notify(summary.status, job.config.success_notifications, started):
        job.notifier.send(notification_subject(job.title, summary.status), body)

    cleanup_old_reports(job.report_dir, job.config.report_retention_days)
    return JobResult(exit_code=summary.status.exit_code, summary=summary)


def run_all(jobs: Iterable[BackupJob]) -> list[JobResult]:
    """
    Run jobs one after another.

    A failing job is logged and the next one still runs.
    """
    results = []
    for job in jobs:
        try:
            result = run_job(job)
        except Exception:
            logger.exception("Unexpected error executing %s", job.name)
            result = JobResult(exit_code=1)

        if result.exit_code != 0:
            logger.error("Error executing %s (exit code: %d)", job.name, result.exit_code)
        results.append(result)
    return results
