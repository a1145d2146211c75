"""
Single-instance run lock.

Each job owns one lock file holding the PID of the process running it.
A lock whose PID is no longer alive is orphaned and reclaimed on the
next acquire, so a crashed run never needs manual cleanup.
"""

import logging
import os
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import psutil

from nas_sync.errors import AlreadyRunning

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def read_holder(lock_path: Path) -> Optional[int]:
    """Return the PID recorded in a lock file, or None if absent or unreadable."""
    try:
        text = lock_path.read_text().strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Could not read lock file %s: %s", lock_path, e)
        return None

    try:
        pid = int(text)
    except ValueError:
        return None
    return pid if pid > 0 else None


def is_alive(pid: int) -> bool:
    """Check whether a process exists (zombies count as dead)."""
    if not psutil.pid_exists(pid):
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.Error:
        # Exists but cannot be inspected; assume it is a live holder.
        return True


class RunLock:
    """
    PID-checked lock file.

    acquire() either takes ownership or raises AlreadyRunning.
    release() is idempotent and only ever removes a lock this
    instance owns.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self.owned = False

    def acquire(self) -> None:
        """
        Take the lock, reclaiming it if the recorded holder is dead.

        Raises:
            AlreadyRunning: If a live process holds the lock.
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(2):
            if self._try_create():
                self.owned = True
                logger.info("Lock file created (PID: %d)", os.getpid())
                return

            holder = read_holder(self.lock_path)
            if holder is not None and is_alive(holder):
                logger.warning("Already running (PID: %d). Exiting.", holder)
                raise AlreadyRunning(holder)

            logger.warning("Orphaned lock file found (PID: %s). Removing.", holder)
            self._remove_if_holder(holder)

        # Another process reclaimed the orphan between our two attempts.
        holder = read_holder(self.lock_path)
        logger.warning("Lock taken over by PID %s. Exiting.", holder)
        raise AlreadyRunning(holder or 0)

    def release(self) -> None:
        """Remove the lock file if this instance owns it."""
        if not self.owned:
            return
        self.owned = False

        if read_holder(self.lock_path) != os.getpid():
            logger.warning("Lock file %s no longer belongs to us; leaving it", self.lock_path)
            return

        self.lock_path.unlink(missing_ok=True)
        logger.info("Lock file removed")

    def _try_create(self) -> bool:
        """
        Atomically create the lock file with our PID already in it.

        The PID is written to a private temp file which is then hard-linked
        into place, so no other process can ever observe an empty lock.
        """
        temp_path = self.lock_path.with_name(f".{self.lock_path.name}.{os.getpid()}")
        temp_path.write_text(f"{os.getpid()}\n")
        try:
            os.link(temp_path, self.lock_path)
            return True
        except FileExistsError:
            return False
        finally:
            temp_path.unlink(missing_ok=True)

    def _remove_if_holder(self, holder: Optional[int]) -> None:
        if read_holder(self.lock_path) == holder:
            self.lock_path.unlink(missing_ok=True)


@contextmanager
def run_lock(lock_path: Path) -> Iterator[RunLock]:
    """
    Hold the run lock for the duration of a with-block.

    The lock is released on normal exit, on any exception, and on
    SIGINT/SIGTERM (after which the process exits with status 1).

    Raises:
        AlreadyRunning: If a live process holds the lock.
    """
    lock = RunLock(lock_path)
    lock.acquire()

    def _on_signal(signum, frame):
        logger.warning("Signal %s received. Cleaning up...", signal.Signals(signum).name)
        lock.release()
        raise SystemExit(1)

    previous = {sig: signal.signal(sig, _on_signal) for sig in HANDLED_SIGNALS}
    try:
        yield lock
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)
        lock.release()
