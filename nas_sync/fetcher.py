"""
Rate-limited JSON API client with page-by-page fetching.

Provides:
- A fixed minimum delay between consecutive requests
- Bounded connect/read timeouts on every request
- Validation of every response before anything is extracted
- Lazy pagination with duplicate detection and a page limit
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import requests
from ratelimit import RateLimitException, sleep_and_retry

from nas_sync.config import Config
from nas_sync.errors import (
    DuplicateItemError,
    FetchError,
    MalformedPageError,
    PageLimitExceeded,
)

logger = logging.getLogger(__name__)


@dataclass
class RemoteItem:
    """A single unit fetched from a remote API."""

    identifier: str
    url: str
    is_fork: bool = False
    is_archived: bool = False
    payload: Any = None


Normalizer = Callable[[dict], RemoteItem]


def _error_detail(response: requests.Response) -> str:
    """Pull the API's own error message out of a failed response, if any."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict) and body.get("message"):
        return f": {body['message']}"
    return ""


class ApiClient:
    """
    Thin JSON client over a requests session.

    Every request made through one client shares the same rate limiter,
    so consecutive pages and consecutive endpoints are spaced alike.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session,
        config: Config,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            base_url: API root, e.g. https://api.github.com
            session: Session carrying authentication headers.
            config: Supplies timeouts, page size, page limit and delay.
            clock: Monotonic time source used to space requests.
        """
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = config.http_timeout
        self.page_size = config.page_size
        self.max_pages = config.max_pages
        self.request_delay = config.request_delay
        self._clock = clock
        self._last_request: Optional[float] = None
        self._request_count = 0
        self._rate_limited_get = sleep_and_retry(self._get)

    def _get(self, url: str, params: Optional[dict]) -> requests.Response:
        """
        Send one request, at least ``request_delay`` seconds after the
        previous one finished.

        Raises:
            RateLimitException: If the gap has not elapsed yet; sleep_and_retry
                sleeps for the remainder and calls again.
        """
        if self._last_request is not None:
            remaining = self.request_delay - (self._clock() - self._last_request)
            if remaining > 0:
                raise RateLimitException("request delay not elapsed", remaining)

        self._request_count += 1
        try:
            return self.session.get(url, params=params, timeout=self.timeout)
        finally:
            self._last_request = self._clock()

    def request(self, path: str, params: Optional[dict] = None) -> Any:
        """
        GET a path and return its decoded JSON body.

        Raises:
            FetchError: On transport errors, timeouts and non-2xx responses.
            MalformedPageError: If the body is not valid JSON.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug("GET %s %s", url, params or "")

        try:
            response = self._rate_limited_get(url, params)
        except requests.Timeout as e:
            raise FetchError(f"Timed out requesting {path}") from e
        except requests.RequestException as e:
            raise FetchError(f"Request to {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(
                f"Request to {path} failed{_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedPageError(f"{path} returned invalid JSON") from e

    def fetch_one(self, path: str, params: Optional[dict] = None) -> Any:
        """
        One-shot fetch of a single resource or a filtered query.

        Returns:
            The decoded JSON object or array.
        """
        payload = self.request(path, params)
        if not isinstance(payload, (dict, list)):
            raise MalformedPageError(f"{path} did not return a JSON object or array")
        return payload

    def fetch_all(
        self,
        path: str,
        normalize: Normalizer,
        params: Optional[dict] = None,
    ) -> Iterator[RemoteItem]:
        """
        Lazily walk a paginated collection.

        Pages are requested with ``page``/``per_page`` until a page comes
        back empty or shorter than ``per_page``. Items are emitted in the
        order the API returns them. A page is fully validated before any
        of its items are emitted.

        Args:
            path: Collection path, e.g. "user/repos".
            normalize: Turns one raw JSON object into a RemoteItem.
            params: Extra query parameters sent with every page.

        Yields:
            RemoteItem objects.

        Raises:
            MalformedPageError: A page is not an array of objects, or an
                object cannot be normalized.
            DuplicateItemError: An identifier was already emitted.
            PageLimitExceeded: ``max_pages`` full pages and the next page
                is not empty.
            FetchError: Any request failure.
        """
        seen: set[str] = set()

        for page in range(1, self.max_pages + 1):
            payload = self.request(path, {**(params or {}), "page": page, "per_page": self.page_size})

            if not isinstance(payload, list):
                raise MalformedPageError(f"{path} page {page} is not a JSON array")

            items = []
            for raw in payload:
                if not isinstance(raw, dict):
                    raise MalformedPageError(f"{path} page {page} contains a non-object element")
                try:
                    items.append(normalize(raw))
                except (KeyError, TypeError, ValueError) as e:
                    raise MalformedPageError(f"{path} page {page} has an invalid item: {e!r}") from e

            logger.debug("%s page %d: %d items", path, page, len(items))

            for item in items:
                if item.identifier in seen:
                    raise DuplicateItemError(
                        f"{path} returned {item.identifier!r} more than once (page {page})"
                    )
                seen.add(item.identifier)
                yield item

            if len(payload) < self.page_size:
                return

        # Every page was full: only an empty next page proves the collection ended.
        extra_page = self.max_pages + 1
        payload = self.request(path, {**(params or {}), "page": extra_page, "per_page": self.page_size})
        if isinstance(payload, list) and not payload:
            return

        raise PageLimitExceeded(
            f"{path} still returning items after {self.max_pages} full pages"
        )

    @property
    def request_count(self) -> int:
        """Number of API requests made."""
        return self._request_count
