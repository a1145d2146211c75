"""
Sync engine and merge policy.

For every fetched item:
1. Apply filters (archived, forks) -> SKIP
2. No local record -> CREATE
3. Local record exists -> UPDATE

Failures are isolated per item: one failing item is recorded and the
batch moves on. A fetch failure ends the batch for that source only.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from nas_sync.archive import Archive
from nas_sync.errors import FetchError, ItemSyncError
from nas_sync.fetcher import RemoteItem
from nas_sync.reporter import Outcome, RunReporter

logger = logging.getLogger(__name__)


class Action(Enum):
    """What the engine decided to do with an item."""
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class MergePolicy:
    """Filters applied before an item reaches the archive."""

    include_forks: bool = False

    def skip_reason(self, item: RemoteItem) -> Optional[str]:
        """Why an item is filtered out, or None if it should be synced."""
        if item.is_archived:
            return "archived"
        if item.is_fork and not self.include_forks:
            return "fork"
        return None

    def classify(self, item: RemoteItem, archive: Archive) -> Action:
        if self.skip_reason(item):
            return Action.SKIP
        if archive.exists(item):
            return Action.UPDATE
        return Action.CREATE


class SyncEngine:
    """
    Dispatches fetched items to an archive and records each outcome.

    Items are processed strictly in the order they are fetched.
    """

    def __init__(self, archive: Archive, reporter: RunReporter, policy: Optional[MergePolicy] = None):
        self.archive = archive
        self.reporter = reporter
        self.policy = policy or MergePolicy()
        # archive path -> identifier that wrote it during this run
        self._claimed: dict[Path, str] = {}

    def _claim(self, item: RemoteItem) -> None:
        """
        Reserve the item's archive path for this run.

        Raises:
            ItemSyncError: If another item already wrote to the same path.
        """
        path = self.archive.path_for(item)
        owner = self._claimed.get(path)
        if owner is not None:
            raise ItemSyncError(
                item.identifier,
                f"archive path {path} already used by {owner!r} in this run",
            )
        self._claimed[path] = item.identifier

    def sync_item(self, item: RemoteItem) -> Outcome:
        """
        Classify and sync a single item.

        Never raises for item-level problems; they become FAILED outcomes.
        """
        try:
            action = self.policy.classify(item, self.archive)

            if action is Action.SKIP:
                reason = self.policy.skip_reason(item)
                logger.warning("Skipping %s: %s", reason, item.identifier)
                self.reporter.record(item.identifier, Outcome.SKIPPED, reason)
                return Outcome.SKIPPED

            logger.info("Processing: %s", item.identifier)
            self._claim(item)
            if action is Action.CREATE:
                self.archive.create(item)
                outcome = Outcome.CREATED
            else:
                self.archive.update(item)
                outcome = Outcome.UPDATED
        except Exception as e:
            logger.error("Failed to sync %s: %s", item.identifier, e)
            self.reporter.record(item.identifier, Outcome.FAILED, str(e))
            return Outcome.FAILED

        logger.info("%s: %s", outcome.value.capitalize(), item.identifier)
        self.reporter.record(item.identifier, outcome)
        return outcome

    def sync_batch(self, source: str, items: Iterable[RemoteItem]) -> bool:
        """
        Sync every item a source produces.

        Items emitted before a fetch failure keep their outcomes; the
        failure itself is recorded once against the source.

        Args:
            source: Name of the endpoint or collection, used in the report.
            items: Lazy sequence of fetched items.

        Returns:
            True if the source was fetched completely.
        """
        try:
            for item in items:
                self.sync_item(item)
        except FetchError as e:
            logger.error("Fetching %s failed: %s", source, e)
            self.reporter.record_fetch_failure(source, str(e))
            return False
        return True
