"""Shared test fixtures."""
from pathlib import Path
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
import requests

from nas_sync.config import Config


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """A fully configured Config pointing every path into tmp_path, with no delays."""
    return Config(
        github_username="octocat",
        github_token="ghp_test",
        github_backup_dir=tmp_path / "github",
        paymo_api_key="paymo-key",
        paymo_email="me@example.com",
        paymo_backup_dir=tmp_path / "paymo",
        lock_dir=tmp_path / "locks",
        log_file=tmp_path / "logs" / "nas-sync.log",
        request_delay=0,
        page_size=2,
        max_pages=5,
        min_free_space_gb=0,
    )


def make_response(status_code: int = 200, body: Any = None, invalid_json: bool = False) -> MagicMock:
    """A stand-in for requests.Response."""
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = body
    return response


def make_session(*responses) -> MagicMock:
    """A requests.Session whose get() returns the given responses in order."""
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    session.auth = None
    session.get.side_effect = list(responses)
    return session


def repo(name: str, fork: bool = False, archived: bool = False, owner: Optional[str] = "octocat") -> dict:
    """A minimal /user/repos element."""
    return {
        "name": name,
        "full_name": f"{owner}/{name}",
        "owner": {"login": owner},
        "clone_url": f"https://github.com/{owner}/{name}.git",
        "fork": fork,
        "archived": archived,
    }
