"""
Configuration management for NAS sync.

Loads settings from environment variables (and an optional .env file)
into a single immutable Config that is passed to every component.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from nas_sync.errors import ConfigError

RETENTION_POLICIES = ("snapshot", "append")
SUCCESS_NOTIFICATION_MODES = ("always", "weekly", "never")

# Characters allowed in on-disk names; everything else becomes "_".
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_identifier(identifier: str) -> str:
    """
    Turn a remote identifier into a safe single path component.

    Whitelist: ASCII letters, digits, ".", "_" and "-". Any other
    character (including "/" and whitespace) is replaced by "_", and
    leading dots are stripped so the result can never be hidden,
    "." or "..".

    Examples:
        "my-repo" -> "my-repo"
        "Time Entries" -> "Time_Entries"
        "a/b" -> "a_b"
        "..secret" -> "secret"

    Raises:
        ValueError: If nothing usable is left.
    """
    cleaned = _UNSAFE_CHARS.sub("_", identifier.strip()).lstrip(".")
    if not cleaned:
        raise ValueError(f"Identifier {identifier!r} has no usable characters")
    return cleaned


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return cast(value.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def _env_path(name: str, default: str) -> Path:
    return Path(_env_str(name, default) or default)


@dataclass(frozen=True)
class Config:
    """
    Central configuration for the sync system.

    Built once at startup and never mutated; CLI overrides go through
    dataclasses.replace(). Credentials are optional here and checked per
    job by require_github() / require_paymo().
    """

    # GitHub (mirror mode)
    github_username: str = ""
    github_token: str = ""
    github_backup_dir: Path = Path("/volume1/GithubBackup")
    include_forks: bool = False
    github_api_url: str = "https://api.github.com"

    # Paymo (append mode)
    paymo_api_key: str = ""
    paymo_email: str = ""
    paymo_backup_dir: Path = Path("/volume1/Backup/Paymo")
    history_retention: str = "snapshot"
    paymo_api_url: str = "https://app.paymoapp.com/api"

    # Run control
    lock_dir: Path = Path("/tmp")
    log_file: Path = Path("/var/log/nas-sync.log")
    max_log_size_mb: int = 10
    log_backup_count: int = 3
    report_retention_days: int = 90
    min_free_space_gb: float = 1.0

    # Notification
    notification_email: str = ""
    success_notifications: str = "always"

    # Fetching
    request_delay: float = 1.0
    page_size: int = 100
    max_pages: int = 100
    connect_timeout: float = 10.0
    max_time: float = 60.0
    git_timeout: float = 1800.0

    debug: bool = False

    def __post_init__(self):
        if self.history_retention not in RETENTION_POLICIES:
            raise ConfigError(
                f"HISTORY_RETENTION must be one of {', '.join(RETENTION_POLICIES)}, "
                f"got {self.history_retention!r}"
            )
        if self.success_notifications not in SUCCESS_NOTIFICATION_MODES:
            raise ConfigError(
                f"SUCCESS_NOTIFICATIONS must be one of {', '.join(SUCCESS_NOTIFICATION_MODES)}, "
                f"got {self.success_notifications!r}"
            )
        if not 1 <= self.page_size <= 100:
            raise ConfigError(f"PAGE_SIZE must be between 1 and 100, got {self.page_size}")
        if self.max_pages < 1:
            raise ConfigError(f"MAX_PAGES must be at least 1, got {self.max_pages}")
        if self.request_delay < 0:
            raise ConfigError(f"REQUEST_DELAY cannot be negative, got {self.request_delay}")

    @property
    def http_timeout(self) -> tuple[float, float]:
        """(connect, read) timeout pair for requests."""
        return (self.connect_timeout, self.max_time)

    @property
    def paymo_history_dir(self) -> Path:
        """Directory holding one history file per Paymo resource."""
        return self.paymo_backup_dir / "incremental"

    @property
    def paymo_report_dir(self) -> Path:
        return self.paymo_backup_dir / "logs"

    @property
    def github_report_dir(self) -> Path:
        # Hidden so it is never mistaken for a mirrored repository.
        return self.github_backup_dir / ".reports"

    def lock_path(self, job: str) -> Path:
        """Lock file guarding a job, e.g. /tmp/github-backup.lock."""
        return self.lock_dir / f"{job}-backup.lock"

    def require_github(self) -> None:
        """
        Check that GitHub credentials are configured.

        Raises:
            ConfigError: If the username or token is missing.
        """
        if not self.github_username:
            raise ConfigError(
                "GITHUB_USERNAME environment variable is required.\n"
                "Set this to the account whose repositories are backed up."
            )
        if not self.github_token:
            raise ConfigError(
                "GITHUB_TOKEN environment variable is required.\n"
                "Create a token at https://github.com/settings/tokens"
            )

    def require_paymo(self) -> None:
        """
        Check that Paymo credentials are configured.

        Raises:
            ConfigError: If the API key or email is missing.
        """
        if not self.paymo_api_key:
            raise ConfigError(
                "PAYMO_API_KEY environment variable is required.\n"
                "Get your API key at https://app.paymoapp.com -> Settings -> API & Integrations"
            )
        if not self.paymo_email:
            raise ConfigError("PAYMO_EMAIL environment variable is required.")

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Config":
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional path to .env file. If not provided,
                     looks for .env in current directory.

        Returns:
            Configured Config instance.

        Raises:
            ConfigError: If a variable holds an invalid value.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        defaults = cls()

        return cls(
            github_username=_env_str("GITHUB_USERNAME"),
            github_token=_env_str("GITHUB_TOKEN"),
            github_backup_dir=_env_path("GITHUB_BACKUP_DIR", str(defaults.github_backup_dir)),
            include_forks=_env_bool("INCLUDE_FORKS", defaults.include_forks),
            github_api_url=_env_str("GITHUB_API_URL", defaults.github_api_url).rstrip("/"),
            paymo_api_key=_env_str("PAYMO_API_KEY"),
            paymo_email=_env_str("PAYMO_EMAIL"),
            paymo_backup_dir=_env_path("PAYMO_BACKUP_DIR", str(defaults.paymo_backup_dir)),
            history_retention=_env_str("HISTORY_RETENTION", defaults.history_retention).lower(),
            paymo_api_url=_env_str("PAYMO_API_URL", defaults.paymo_api_url).rstrip("/"),
            lock_dir=_env_path("LOCK_DIR", str(defaults.lock_dir)),
            log_file=_env_path("LOG_FILE", str(defaults.log_file)),
            max_log_size_mb=_env_number("MAX_LOG_SIZE_MB", defaults.max_log_size_mb, int),
            log_backup_count=_env_number("LOG_BACKUP_COUNT", defaults.log_backup_count, int),
            report_retention_days=_env_number(
                "REPORT_RETENTION_DAYS", defaults.report_retention_days, int
            ),
            min_free_space_gb=_env_number("MIN_FREE_SPACE_GB", defaults.min_free_space_gb, float),
            notification_email=_env_str("NOTIFICATION_EMAIL"),
            success_notifications=_env_str(
                "SUCCESS_NOTIFICATIONS", defaults.success_notifications
            ).lower(),
            request_delay=_env_number("REQUEST_DELAY", defaults.request_delay, float),
            page_size=_env_number("PAGE_SIZE", defaults.page_size, int),
            max_pages=_env_number("MAX_PAGES", defaults.max_pages, int),
            connect_timeout=_env_number("CONNECT_TIMEOUT", defaults.connect_timeout, float),
            max_time=_env_number("MAX_TIME", defaults.max_time, float),
            git_timeout=_env_number("GIT_TIMEOUT", defaults.git_timeout, float),
            debug=_env_bool("DEBUG", False),
        )
