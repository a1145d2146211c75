"""
Paymo REST API wrapper.

Each Paymo resource is fetched with a single (optionally filtered) query
and archived as one self-describing record per run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Optional
from urllib.parse import urlencode

import requests

from nas_sync.config import Config
from nas_sync.errors import FetchError, MalformedPageError, PreconditionError
from nas_sync.fetcher import ApiClient, RemoteItem

logger = logging.getLogger(__name__)

# Earliest date time entries are requested from.
TIME_ENTRIES_SINCE = "2014-12-01T00:00:00Z"


@dataclass(frozen=True)
class PaymoResource:
    """One Paymo endpoint and the history file it is archived into."""

    name: str
    path: str
    description: str
    params: dict = field(default_factory=dict)

    @property
    def endpoint(self) -> str:
        """Path plus query string, as recorded in each archive entry."""
        if not self.params:
            return self.path
        return f"{self.path}?{urlencode(self.params)}"


def paymo_resources(now: Optional[datetime] = None) -> list[PaymoResource]:
    """
    All resources backed up on each run, current user first.

    Args:
        now: Upper bound of the time-entries interval (defaults to UTC now).
    """
    now = now or datetime.now(timezone.utc)
    until = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    return [
        PaymoResource("user_info", "me", "User Information"),
        PaymoResource("Projects", "projects", "Projects"),
        PaymoResource("Clients", "clients", "Clients"),
        PaymoResource("Users", "users", "Users"),
        PaymoResource("Tasks", "tasks", "Tasks"),
        PaymoResource(
            "Time_Entries",
            "entries",
            "Time Entries",
            {"where": f'time_interval in ("{TIME_ENTRIES_SINCE}","{until}")'},
        ),
        PaymoResource("Invoices", "invoicepayments", "Invoices"),
        PaymoResource("Expenses", "expenses", "Expenses"),
        PaymoResource("Milestones", "milestones", "Milestones"),
        PaymoResource("Discussions", "discussions", "Discussions"),
        PaymoResource("Files", "files", "Files"),
        PaymoResource("Reports", "reports", "Reports"),
        PaymoResource("Webhooks", "hooks", "Webhooks"),
    ]


def describe_user(payload) -> str:
    """Render "name (company)" from a /me response."""
    user = payload
    if isinstance(payload, dict) and isinstance(payload.get("users"), list) and payload["users"]:
        user = payload["users"][0]
    if not isinstance(user, dict):
        return "Unknown (Unknown)"
    return f"{user.get('name') or 'Unknown'} ({user.get('company') or 'Unknown'})"


class PaymoAPI:
    """Paymo client authenticated with an API key (basic auth)."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        session = session or requests.Session()
        # Paymo ignores the password when the username is an API key.
        session.auth = (config.paymo_api_key, "random")
        session.headers.update({"Accept": "application/json"})
        self.client = ApiClient(config.paymo_api_url, session, config)

    def check_connectivity(self) -> dict:
        """
        Verify the API is reachable and the key is valid.

        Returns:
            The /me response.

        Raises:
            PreconditionError: If the request fails for any reason.
        """
        logger.info("Testing connectivity to Paymo API...")
        try:
            me = self.client.fetch_one("me")
        except FetchError as e:
            if e.status_code == 401:
                logger.error("Invalid API key. Check your PAYMO_API_KEY configuration")
            raise PreconditionError(f"Failed to connect to Paymo API: {e}") from e

        logger.info("Connectivity to Paymo API: OK")
        logger.info("Backup for user: %s", describe_user(me))
        return me

    def fetch_resource(self, resource: PaymoResource) -> RemoteItem:
        """
        Download one resource.

        Raises:
            MalformedPageError: If the response is empty.
            FetchError: On any request failure.
        """
        logger.info("Downloading %s...", resource.description)
        payload = self.client.fetch_one(resource.path, resource.params or None)
        if not payload:
            raise MalformedPageError(f"{resource.description} downloaded but response is empty")

        return RemoteItem(
            identifier=resource.name,
            url=resource.endpoint,
            payload=payload,
        )

    def iter_resource(self, resource: PaymoResource) -> Iterator[RemoteItem]:
        """Lazy single-item sequence, so the fetch happens inside the sync batch."""
        yield self.fetch_resource(resource)

    @property
    def request_count(self) -> int:
        return self.client.request_count
