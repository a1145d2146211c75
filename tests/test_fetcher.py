"""Tests for the paginated API client."""
from dataclasses import replace
from unittest.mock import patch

import pytest
import requests

from nas_sync.errors import (
    DuplicateItemError,
    FetchError,
    MalformedPageError,
    PageLimitExceeded,
)
from nas_sync.fetcher import ApiClient, RemoteItem

from tests.conftest import make_response, make_session


def normalize(raw: dict) -> RemoteItem:
    return RemoteItem(identifier=raw["id"], url=f"https://example.com/{raw['id']}", payload=raw)


def items(*ids):
    return [{"id": i} for i in ids]


def client_for(config, *responses) -> ApiClient:
    return ApiClient("https://api.example.com/", make_session(*responses), config)


class TestFetchAll:
    def test_emits_every_item_across_pages_in_order(self, config):
        client = client_for(
            config,
            make_response(body=items("a", "b")),
            make_response(body=items("c", "d")),
            make_response(body=items("e")),
        )

        fetched = [item.identifier for item in client.fetch_all("things", normalize)]

        assert fetched == ["a", "b", "c", "d", "e"]
        assert client.request_count == 3

    def test_stops_on_empty_page_when_collection_fills_last_page(self, config):
        client = client_for(
            config,
            make_response(body=items("a", "b")),
            make_response(body=items("c", "d")),
            make_response(body=[]),
        )

        fetched = [item.identifier for item in client.fetch_all("things", normalize)]

        assert fetched == ["a", "b", "c", "d"]
        assert client.request_count == 3

    def test_empty_collection(self, config):
        client = client_for(config, make_response(body=[]))
        assert list(client.fetch_all("things", normalize)) == []

    def test_sends_page_cursor_and_extra_params(self, config):
        session = make_session(
            make_response(body=items("a", "b")),
            make_response(body=[]),
        )
        client = ApiClient("https://api.example.com", session, config)

        list(client.fetch_all("user/repos", normalize, params={"type": "all"}))

        first, second = session.get.call_args_list
        assert first.args == ("https://api.example.com/user/repos",)
        assert first.kwargs["params"] == {"type": "all", "page": 1, "per_page": 2}
        assert second.kwargs["params"] == {"type": "all", "page": 2, "per_page": 2}
        assert first.kwargs["timeout"] == (config.connect_timeout, config.max_time)

    def test_is_lazy(self, config):
        session = make_session(make_response(body=items("a", "b")), make_response(body=[]))
        client = ApiClient("https://api.example.com", session, config)

        iterator = client.fetch_all("things", normalize)
        assert session.get.call_count == 0

        next(iterator)
        assert session.get.call_count == 1

    def test_malformed_page_keeps_earlier_items_then_fails(self, config):
        client = client_for(
            config,
            make_response(body=items("a", "b")),
            make_response(body={"unexpected": "object"}),
        )
        fetched = []

        with pytest.raises(MalformedPageError):
            for item in client.fetch_all("things", normalize):
                fetched.append(item.identifier)

        assert fetched == ["a", "b"]

    def test_page_with_invalid_item_emits_nothing_from_that_page(self, config):
        client = client_for(
            config,
            make_response(body=items("a", "b")),
            make_response(body=[{"id": "c"}, {"no_id": True}]),
        )
        fetched = []

        with pytest.raises(MalformedPageError):
            for item in client.fetch_all("things", normalize):
                fetched.append(item.identifier)

        assert fetched == ["a", "b"]

    def test_non_object_element_is_malformed(self, config):
        client = client_for(config, make_response(body=["just-a-string"]))
        with pytest.raises(MalformedPageError):
            list(client.fetch_all("things", normalize))

    def test_invalid_json_is_malformed(self, config):
        client = client_for(config, make_response(invalid_json=True))
        with pytest.raises(MalformedPageError):
            list(client.fetch_all("things", normalize))

    def test_duplicate_identifier_across_pages_is_detected(self, config):
        client = client_for(
            config,
            make_response(body=items("a", "b")),
            make_response(body=items("b")),
        )

        with pytest.raises(DuplicateItemError, match="'b'"):
            list(client.fetch_all("things", normalize))

    def test_page_limit_exceeded(self, config):
        full_pages = [make_response(body=items(f"{n}a", f"{n}b")) for n in range(config.max_pages + 1)]
        client = client_for(config, *full_pages)

        with pytest.raises(PageLimitExceeded):
            list(client.fetch_all("things", normalize))
        assert client.request_count == config.max_pages + 1

    def test_collection_filling_every_allowed_page_is_complete(self, config):
        full_pages = [make_response(body=items(f"{n}a", f"{n}b")) for n in range(config.max_pages)]
        client = client_for(config, *full_pages, make_response(body=[]))

        fetched = list(client.fetch_all("things", normalize))

        assert len(fetched) == config.max_pages * config.page_size
        assert client.request_count == config.max_pages + 1

    def test_http_error_preserves_status_code(self, config):
        client = client_for(config, make_response(status_code=500, body={"message": "Server Error"}))

        with pytest.raises(FetchError) as exc_info:
            list(client.fetch_all("things", normalize))

        assert exc_info.value.status_code == 500
        assert "Server Error" in str(exc_info.value)
        assert "HTTP: 500" in str(exc_info.value)


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestRequestDelay:
    @pytest.fixture
    def clock(self):
        clock = FakeClock()
        with patch("ratelimit.decorators.time.sleep", side_effect=clock.advance):
            yield clock

    def spaced_client(self, config, clock, duration=0.0):
        """Client whose requests each take ``duration`` seconds; returns send times too."""
        sent_at = []

        def get(*args, **kwargs):
            sent_at.append(clock())
            clock.advance(duration)
            return make_response(body={"ok": True})

        session = make_session()
        session.get.side_effect = get
        client = ApiClient("https://api.example.com", session, replace(config, request_delay=1.0), clock=clock)
        return client, sent_at

    def test_consecutive_requests_are_spaced(self, config, clock):
        client, sent_at = self.spaced_client(config, clock)

        for _ in range(3):
            client.fetch_one("user")

        assert len(sent_at) == 3
        gaps = [later - earlier for earlier, later in zip(sent_at, sent_at[1:])]
        assert all(gap >= 1.0 for gap in gaps)

    def test_first_request_is_not_delayed(self, config, clock):
        client, sent_at = self.spaced_client(config, clock)

        client.fetch_one("user")

        assert sent_at == [100.0]

    def test_no_wait_once_delay_has_passed(self, config, clock):
        client, sent_at = self.spaced_client(config, clock)

        client.fetch_one("user")
        clock.advance(5.0)
        client.fetch_one("user")

        assert sent_at == [100.0, 105.0]

    def test_delay_counts_from_end_of_previous_request(self, config, clock):
        client, sent_at = self.spaced_client(config, clock, duration=3.0)

        client.fetch_one("user")
        client.fetch_one("user")

        # first request runs 100-103, so the second may not start before 104
        assert sent_at == [100.0, 104.0]

    def test_pages_are_spaced(self, config, clock):
        sent_at = []

        def get(*args, **kwargs):
            sent_at.append(clock())
            page = kwargs["params"]["page"]
            return make_response(body=items(f"{page}a", f"{page}b") if page < 3 else [])

        session = make_session()
        session.get.side_effect = get
        client = ApiClient("https://api.example.com", session, replace(config, request_delay=1.0), clock=clock)

        list(client.fetch_all("things", normalize))

        assert sent_at == [100.0, 101.0, 102.0]


class TestFetchOne:
    def test_returns_object(self, config):
        client = client_for(config, make_response(body={"login": "octocat"}))
        assert client.fetch_one("user") == {"login": "octocat"}

    def test_scalar_body_is_malformed(self, config):
        client = client_for(config, make_response(body="hello"))
        with pytest.raises(MalformedPageError):
            client.fetch_one("user")

    def test_unauthorized(self, config):
        client = client_for(config, make_response(status_code=401, body={"message": "Bad credentials"}))
        with pytest.raises(FetchError) as exc_info:
            client.fetch_one("user")
        assert exc_info.value.status_code == 401

    def test_timeout_becomes_fetch_error(self, config):
        client = client_for(config, requests.Timeout("read timed out"))
        with pytest.raises(FetchError) as exc_info:
            client.fetch_one("user")
        assert exc_info.value.status_code is None

    def test_connection_error_becomes_fetch_error(self, config):
        client = client_for(config, requests.ConnectionError("unreachable"))
        with pytest.raises(FetchError, match="unreachable"):
            client.fetch_one("user")
