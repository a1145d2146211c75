"""
GitHub REST API wrapper.

Lists every repository visible to the authenticated user and checks
that the configured token is accepted.
"""

import logging
from functools import partial
from typing import Iterator, Optional

import requests

from nas_sync import __version__
from nas_sync.config import Config
from nas_sync.errors import FetchError, PreconditionError
from nas_sync.fetcher import ApiClient, RemoteItem

logger = logging.getLogger(__name__)


def repository_from_api(raw: dict, owner: str = "") -> RemoteItem:
    """
    Normalize a /user/repos element into a RemoteItem.

    Repositories owned by ``owner`` are identified by their bare name;
    anything else (organisations, collaborations) by its full name so two
    repositories called the same never share a mirror directory.
    """
    name = raw["name"]
    owner_login = (raw.get("owner") or {}).get("login", "")
    if owner and owner_login and owner_login.lower() != owner.lower():
        name = raw.get("full_name") or f"{owner_login}/{name}"

    return RemoteItem(
        identifier=name,
        url=raw["clone_url"],
        is_fork=bool(raw.get("fork", False)),
        is_archived=bool(raw.get("archived", False)),
        payload=raw,
    )


class GitHubAPI:
    """GitHub client authenticated with a personal access token."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        session = session or requests.Session()
        session.headers.update({
            "Authorization": f"token {config.github_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": f"nas-sync/{__version__}",
        })
        self.client = ApiClient(config.github_api_url, session, config)

    def check_connectivity(self) -> dict:
        """
        Verify the API is reachable and the token is valid.

        Returns:
            The authenticated user's profile.

        Raises:
            PreconditionError: If the request fails for any reason.
        """
        logger.info("Testing connectivity to GitHub API...")
        try:
            user = self.client.fetch_one("user")
        except FetchError as e:
            if e.status_code == 401:
                logger.error("Invalid token. Check your GITHUB_TOKEN configuration")
            raise PreconditionError(f"Failed to connect to GitHub API: {e}") from e

        login = user.get("login", "unknown") if isinstance(user, dict) else "unknown"
        logger.info("Connectivity to GitHub API: OK (authenticated as %s)", login)
        return user

    def list_repositories(self) -> Iterator[RemoteItem]:
        """Lazily list all repositories (owned, member and collaborator)."""
        return self.client.fetch_all(
            "user/repos",
            partial(repository_from_api, owner=self.config.github_username),
            params={"type": "all"},
        )

    @property
    def request_count(self) -> int:
        return self.client.request_count
