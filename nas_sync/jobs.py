"""
Backup jobs.

A job ties one remote API to one archive mode:
- GitHubBackupJob: repositories -> git mirrors
- PaymoBackupJob: resources -> JSON history files
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import requests

from nas_sync.archive import Archive, HistoryArchive, MirrorArchive
from nas_sync.config import Config
from nas_sync.engine import SyncEngine
from nas_sync.github import GitHubAPI
from nas_sync.notifier import MailNotifier
from nas_sync.paymo import PaymoAPI, paymo_resources

logger = logging.getLogger(__name__)


class BackupJob(ABC):
    """Base class for a scheduled backup job."""

    name: str = ""
    title: str = ""
    required_binaries: tuple[str, ...] = ()

    def __init__(self, config: Config, notifier: Optional[MailNotifier] = None):
        self.config = config
        self.notifier = notifier or MailNotifier(config.notification_email)

    @property
    @abstractmethod
    def archive_root(self) -> Path:
        ...

    @property
    @abstractmethod
    def report_dir(self) -> Path:
        ...

    @abstractmethod
    def check_credentials(self) -> None:
        """Raise ConfigError if the job's credentials are missing."""

    @abstractmethod
    def check_connectivity(self) -> None:
        """Raise PreconditionError if the remote API is unusable."""

    @abstractmethod
    def build_archive(self, run_timestamp: str) -> Archive:
        ...

    @abstractmethod
    def sync(self, engine: SyncEngine) -> None:
        """Fetch everything and feed it through the engine."""

    def describe(self) -> list[str]:
        """Settings logged at the start of a run."""
        return [f"Archive: {self.archive_root}"]


class GitHubBackupJob(BackupJob):
    """Mirror every repository of the configured GitHub account."""

    name = "github"
    title = "GitHub Sync"
    required_binaries = ("git",)

    def __init__(
        self,
        config: Config,
        notifier: Optional[MailNotifier] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(config, notifier)
        self.api = GitHubAPI(config, session)

    @property
    def archive_root(self) -> Path:
        return self.config.github_backup_dir

    @property
    def report_dir(self) -> Path:
        return self.config.github_report_dir

    def check_credentials(self) -> None:
        self.config.require_github()

    def check_connectivity(self) -> None:
        self.api.check_connectivity()

    def build_archive(self, run_timestamp: str) -> Archive:
        return MirrorArchive(self.config)

    def sync(self, engine: SyncEngine) -> None:
        logger.info("Searching repositories...")
        engine.sync_batch("repositories", self.api.list_repositories())
        logger.debug("GitHub API requests: %d", self.api.request_count)

    def describe(self) -> list[str]:
        return [
            f"User: {self.config.github_username}",
            f"Directory: {self.archive_root}",
            f"Include forks: {self.config.include_forks}",
        ]


class PaymoBackupJob(BackupJob):
    """Archive every Paymo resource as a timestamped history record."""

    name = "paymo"
    title = "Paymo Backup"

    def __init__(
        self,
        config: Config,
        notifier: Optional[MailNotifier] = None,
        session: Optional[requests.Session] = None,
        now: Optional[datetime] = None,
    ):
        super().__init__(config, notifier)
        self.api = PaymoAPI(config, session)
        self.now = now

    @property
    def archive_root(self) -> Path:
        return self.config.paymo_history_dir

    @property
    def report_dir(self) -> Path:
        return self.config.paymo_report_dir

    def check_credentials(self) -> None:
        self.config.require_paymo()

    def check_connectivity(self) -> None:
        self.api.check_connectivity()

    def build_archive(self, run_timestamp: str) -> Archive:
        return HistoryArchive(self.config, run_timestamp)

    def sync(self, engine: SyncEngine) -> None:
        resources = paymo_resources(self.now or datetime.now(timezone.utc))
        completed = 0
        for resource in resources:
            if engine.sync_batch(resource.name, self.api.iter_resource(resource)):
                completed += 1
        logger.info("Downloaded %d of %d endpoints", completed, len(resources))

    def describe(self) -> list[str]:
        return [
            f"Email: {self.config.paymo_email}",
            f"Incremental Directory: {self.archive_root}",
            f"Retention: {self.config.history_retention}",
        ]


JOBS = {
    GitHubBackupJob.name: GitHubBackupJob,
    PaymoBackupJob.name: PaymoBackupJob,
}
