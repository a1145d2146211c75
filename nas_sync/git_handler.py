"""
Git operations handler for mirror mode.

Handles:
- Cloning a remote into a new working copy
- Fetching and fast-forwarding an existing working copy
- Working-copy sanity checks

Credentials are passed per command as an HTTP header, so tokens never
end up in a mirror's .git/config.
"""

import base64
import logging
import os
import subprocess
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


class GitError(Exception):
    """A git command failed or timed out."""

    def __init__(self, args: tuple, message: str):
        self.git_args = args
        super().__init__(f"git {' '.join(args)}: {message}")


def same_remote(first: str, second: str) -> bool:
    """
    Whether two clone URLs name the same repository.

    Credentials embedded in the URL, a trailing slash or ".git" suffix,
    and host case are ignored.
    """
    def key(url: str) -> tuple:
        parts = urlsplit(url.strip())
        path = parts.path.rstrip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        try:
            port = parts.port
        except ValueError:
            port = None
        return (parts.scheme.lower(), (parts.hostname or "").lower(), port, path)

    return key(first) == key(second)


def basic_auth_header(username: str, token: str) -> str:
    """HTTP Authorization header value for username/token basic auth."""
    credentials = base64.b64encode(f"{username}:{token}".encode()).decode()
    return f"Authorization: Basic {credentials}"


class GitHandler:
    """
    Runs git against mirror working copies.

    Every command is non-interactive and bounded by a timeout, so a hung
    remote can never stall the run.
    """

    def __init__(self, auth_header: Optional[str] = None, timeout: float = 1800.0):
        """
        Args:
            auth_header: Optional "Authorization: ..." header for remotes.
            timeout: Seconds before any single git command is abandoned.
        """
        self.auth_header = auth_header
        self.timeout = timeout

    def _run_git(
        self,
        *args: str,
        cwd: Optional[Path] = None,
        authenticated: bool = False,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run a git command, raising GitError on failure when check is set."""
        cmd = ["git"]
        if authenticated and self.auth_header:
            cmd += ["-c", f"http.extraHeader={self.auth_header}"]
        if cwd is not None:
            cmd += ["-C", str(cwd)]
        cmd += list(args)

        # Never log cmd itself: it may carry the auth header.
        logger.debug("Running: git %s", " ".join(args))

        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(args, f"timed out after {self.timeout:.0f}s") from e
        except OSError as e:
            raise GitError(args, str(e)) from e

        if check and result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or f"exit code {result.returncode}"
            raise GitError(args, message)
        return result

    def is_working_copy(self, path: Path) -> bool:
        """Check that path is the top level of a git working copy."""
        if not (path / ".git").exists():
            return False
        result = self._run_git("rev-parse", "--is-inside-work-tree", cwd=path, check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def clone(self, url: str, target: Path) -> None:
        """Full clone of url into target (which must not exist)."""
        self._run_git("clone", "--quiet", url, str(target), authenticated=True)

    def fetch(self, path: Path, remote: str = "origin") -> None:
        """Fetch remote-tracking branches."""
        self._run_git("fetch", "--quiet", "--prune", remote, cwd=path, authenticated=True)

    def get_remote_url(self, path: Path, remote: str = "origin") -> Optional[str]:
        """Configured URL of remote, or None if it is not set."""
        result = self._run_git("remote", "get-url", remote, cwd=path, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def get_upstream(self, path: Path) -> Optional[str]:
        """Upstream of the current branch (e.g. "origin/main"), or None."""
        result = self._run_git(
            "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}",
            cwd=path,
            check=False,
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def has_remote_branches(self, path: Path) -> bool:
        result = self._run_git("branch", "--remotes", cwd=path, check=False)
        return bool(result.stdout.strip())

    def get_head(self, path: Path) -> Optional[str]:
        """Current commit id, or None for a repository without commits."""
        result = self._run_git("rev-parse", "--verify", "--quiet", "HEAD", cwd=path, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def fast_forward(self, path: Path, upstream: str) -> None:
        """
        Advance the current branch to upstream.

        Raises:
            GitError: If the merge is not a fast-forward or would touch
                local modifications. The working copy is left as it was.
        """
        self._run_git("merge", "--ff-only", "--quiet", upstream, cwd=path)
