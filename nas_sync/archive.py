"""
Archive writers.

Two storage modes share one interface (exists / create / update /
inventory):

- MirrorArchive: one git working copy per repository, cloned once and
  fast-forwarded afterwards. Never deleted or rewritten.
- HistoryArchive: one JSON history file per resource, each entry tagged
  with the run timestamp and source endpoint. Written atomically
  (temp file + rename) and re-parsed before it replaces the old file.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from nas_sync.config import Config, sanitize_identifier
from nas_sync.errors import ArchiveWriteError, ItemSyncError, MergeConflictError
from nas_sync.fetcher import RemoteItem
from nas_sync.git_handler import GitError, GitHandler, basic_auth_header, same_remote

logger = logging.getLogger(__name__)


@dataclass
class ArchiveEntry:
    """One resource as currently stored on disk."""

    name: str
    size_bytes: int
    entries: Optional[int] = None


def directory_size(path: Path) -> int:
    """Total size in bytes of all regular files below path."""
    if path.is_file():
        return path.stat().st_size

    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def format_size(size_bytes: float) -> str:
    """Human-readable size, e.g. 1536 -> "1.5K"."""
    for unit in ("B", "K", "M", "G", "T"):
        if size_bytes < 1024 or unit == "T":
            if unit == "B":
                return f"{int(size_bytes)}B"
            return f"{size_bytes:.1f}{unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f}T"


class Archive(ABC):
    """Interface shared by both archive modes."""

    root: Path

    @abstractmethod
    def path_for(self, item: RemoteItem) -> Path:
        """Where item is stored on disk."""

    @abstractmethod
    def exists(self, item: RemoteItem) -> bool:
        ...

    @abstractmethod
    def create(self, item: RemoteItem) -> None:
        ...

    @abstractmethod
    def update(self, item: RemoteItem) -> None:
        ...

    @abstractmethod
    def inventory(self) -> list[ArchiveEntry]:
        ...


class MirrorArchive(Archive):
    """Git working copies under the GitHub backup directory."""

    def __init__(self, config: Config, git: Optional[GitHandler] = None):
        self.root = config.github_backup_dir
        self.git = git or GitHandler(
            auth_header=basic_auth_header(config.github_username, config.github_token),
            timeout=config.git_timeout,
        )

    def path_for(self, item: RemoteItem) -> Path:
        return self.root / sanitize_identifier(item.identifier)

    def exists(self, item: RemoteItem) -> bool:
        return self.path_for(item).exists()

    def create(self, item: RemoteItem) -> None:
        """
        Clone the repository into a new working copy.

        Raises:
            ItemSyncError: If the clone fails.
        """
        target = self.path_for(item)
        logger.info("Cloning: %s", item.identifier)
        try:
            self.git.clone(item.url, target)
        except GitError as e:
            raise ItemSyncError(item.identifier, f"clone failed: {e}") from e

    def update(self, item: RemoteItem) -> None:
        """
        Fetch and fast-forward an existing working copy.

        Local history is never rewritten: anything other than a clean
        fast-forward is reported as a conflict and the directory is left
        exactly as it was.

        Raises:
            ItemSyncError: If the directory is not a working copy of
                item.url or the fetch fails.
            MergeConflictError: If the branch cannot be fast-forwarded.
        """
        target = self.path_for(item)
        logger.info("Repository already exists. Updating: %s", item.identifier)

        if not self.git.is_working_copy(target):
            raise ItemSyncError(item.identifier, f"{target} exists but is not a git working copy")

        origin = self.git.get_remote_url(target)
        if origin is None or not same_remote(origin, item.url):
            raise ItemSyncError(
                item.identifier,
                f"{target} tracks {origin or 'no origin'}, expected {item.url}",
            )

        try:
            self.git.fetch(target)
        except GitError as e:
            raise ItemSyncError(item.identifier, f"fetch failed: {e}") from e

        upstream = self.git.get_upstream(target)
        if upstream is None:
            if not self.git.has_remote_branches(target):
                logger.info("%s: remote is empty, nothing to update", item.identifier)
                return
            raise MergeConflictError(item.identifier, "current branch has no upstream to fast-forward to")

        before = self.git.get_head(target)
        try:
            self.git.fast_forward(target, upstream)
        except GitError as e:
            raise MergeConflictError(item.identifier, f"cannot fast-forward to {upstream}: {e}") from e

        after = self.git.get_head(target)
        if before == after:
            logger.info("%s: already up to date", item.identifier)
        else:
            logger.info("%s: %s -> %s", item.identifier, (before or "(none)")[:7], (after or "")[:7])

    def materialize(self, item: RemoteItem) -> None:
        """Clone item if it has no working copy yet, otherwise fast-forward it."""
        if self.exists(item):
            self.update(item)
        else:
            self.create(item)

    def inventory(self) -> list[ArchiveEntry]:
        """Every mirrored repository with its size on disk."""
        if not self.root.is_dir():
            return []
        return [
            ArchiveEntry(name=path.name, size_bytes=directory_size(path))
            for path in sorted(self.root.iterdir())
            if path.is_dir() and not path.name.startswith(".")
        ]


class HistoryArchive(Archive):
    """
    JSON history files, one per resource.

    Each file is a JSON array of entries shaped
    ``{"backup_timestamp": ..., "endpoint": ..., "data": ...}``.

    Retention:
        snapshot: the file is replaced by a one-entry array each run.
        append:   the new entry is appended; the file only ever grows.
    """

    def __init__(self, config: Config, run_timestamp: str):
        self.root = config.paymo_history_dir
        self.retention = config.history_retention
        self.run_timestamp = run_timestamp

    def path_for(self, item: RemoteItem) -> Path:
        return self.root / f"{sanitize_identifier(item.identifier)}.json"

    def exists(self, item: RemoteItem) -> bool:
        return self.path_for(item).exists()

    def create(self, item: RemoteItem) -> None:
        self.persist(item)

    def update(self, item: RemoteItem) -> None:
        self.persist(item)

    def build_entry(self, item: RemoteItem) -> dict:
        """Wrap a payload so the record describes itself."""
        return {
            "backup_timestamp": self.run_timestamp,
            "endpoint": item.url,
            "data": item.payload,
        }

    def persist(self, item: RemoteItem) -> Path:
        """
        Write this run's entry for item.

        Returns:
            Path to the history file.

        Raises:
            ArchiveWriteError: If the existing history is unreadable (append
                mode), or the new file cannot be written or validated. The
                previous file is untouched in every failure case.
        """
        target = self.path_for(item)
        target.parent.mkdir(parents=True, exist_ok=True)
        self._clear_stale_temp_files(target)

        entries = [self.build_entry(item)]
        if self.retention == "append" and target.exists():
            entries = self._load_history(target, item) + entries

        self._write_atomic(target, entries, item)

        logger.info(
            "%s saved (%d %s, %s)",
            item.identifier,
            len(entries),
            "entry" if len(entries) == 1 else "entries",
            format_size(target.stat().st_size),
        )
        return target

    def _load_history(self, target: Path, item: RemoteItem) -> list:
        try:
            with open(target, encoding="utf-8") as f:
                history = json.load(f)
        except (OSError, ValueError) as e:
            raise ArchiveWriteError(item.identifier, f"existing history {target} is unreadable: {e}") from e

        if not isinstance(history, list):
            raise ArchiveWriteError(item.identifier, f"existing history {target} is not a JSON array")
        return history

    def _write_atomic(self, target: Path, entries: list, item: RemoteItem) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                delete=False,
                dir=str(target.parent),
                prefix=f".{target.stem}.",
                suffix=".tmp",
            ) as tmp:
                tmp_path = Path(tmp.name)
                json.dump(entries, tmp, indent=2, ensure_ascii=False)
                tmp.flush()
                os.fsync(tmp.fileno())

            self._validate(tmp_path, entries, item)
            os.replace(tmp_path, target)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise ArchiveWriteError(item.identifier, f"failed to write {target}: {e}") from e
        except ArchiveWriteError:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise

    def _validate(self, path: Path, entries: list, item: RemoteItem) -> None:
        """Re-parse a written file and compare it with what was meant to be written."""
        try:
            with open(path, encoding="utf-8") as f:
                written = json.load(f)
        except ValueError as e:
            raise ArchiveWriteError(item.identifier, f"written file does not parse: {e}") from e

        if written != entries:
            raise ArchiveWriteError(item.identifier, "written file does not match the fetched data")

    def _clear_stale_temp_files(self, target: Path) -> None:
        """Remove temp files a crashed run left behind for this resource."""
        for stale in target.parent.glob(f".{target.stem}.*.tmp"):
            logger.warning("Removing stale temp file %s", stale)
            stale.unlink(missing_ok=True)

    def inventory(self) -> list[ArchiveEntry]:
        """Every history file with its entry count and size."""
        if not self.root.is_dir():
            return []
        return [
            ArchiveEntry(name=path.stem, size_bytes=path.stat().st_size, entries=entry_count(path))
            for path in sorted(self.root.glob("*.json"))
            if path.is_file()
        ]


def entry_count(path: Path) -> Optional[int]:
    """Number of entries in a history file, or None if unreadable."""
    try:
        with open(path, encoding="utf-8") as f:
            history = json.load(f)
    except (OSError, ValueError):
        return None
    return len(history) if isinstance(history, list) else None
