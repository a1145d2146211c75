"""Tests for job orchestration: prerequisites, locking, reporting, notification."""
from dataclasses import replace
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from nas_sync.archive import MirrorArchive
from nas_sync.git_handler import GitHandler
from nas_sync.jobs import BackupJob, GitHubBackupJob, PaymoBackupJob
from nas_sync.notifier import MailNotifier
from nas_sync.reporter import RunStatus
from nas_sync.runner import JobResult, check_prerequisites, run_all, run_job

from tests.conftest import make_response, repo

MONDAY = datetime(2025, 3, 10, 2, 0, 0)


def routed_session(routes, default=None):
    """A session answering by URL suffix; unknown URLs get ``default``."""
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    session.auth = None

    def get(url, params=None, timeout=None):
        for suffix, response in routes.items():
            if url.endswith(suffix):
                return response if isinstance(response, MagicMock) else response()
        return default or make_response(body={"items": [{"id": 1}]})

    session.get.side_effect = get
    return session


@pytest.fixture
def notifier():
    mock = MagicMock(spec=MailNotifier)
    mock.send.return_value = True
    return mock


def subjects(notifier):
    return [call.args[0] for call in notifier.send.call_args_list]


class TestPaymoRun:
    def test_full_success(self, config, notifier):
        session = routed_session({"/me": make_response(body={"users": [{"name": "Ana"}]})})
        job = PaymoBackupJob(config, notifier, session, now=MONDAY)

        result = run_job(job, now=MONDAY)

        assert result.exit_code == 0
        assert result.summary.status is RunStatus.FULL_SUCCESS
        assert result.summary.created == 13
        assert len(list(config.paymo_history_dir.glob("*.json"))) == 13
        assert (config.paymo_report_dir / "paymo_summary_2025-03-10_02-00-00.txt").exists()
        assert subjects(notifier) == ["Paymo Backup - Success"]
        assert not config.lock_path("paymo").exists()

    def test_second_run_updates(self, config, notifier):
        session = routed_session({"/me": make_response(body={"id": 1})})
        job = PaymoBackupJob(config, notifier, session, now=MONDAY)

        run_job(job, now=MONDAY)
        result = run_job(job, now=datetime(2025, 3, 11, 2, 0, 0))

        assert (result.summary.created, result.summary.updated) == (0, 13)

    def test_failed_endpoint_is_partial_success(self, config, notifier):
        session = routed_session({
            "/me": make_response(body={"id": 1}),
            "/files": make_response(status_code=500, body={"message": "Server Error"}),
        })
        job = PaymoBackupJob(config, notifier, session, now=MONDAY)

        result = run_job(job, now=MONDAY)

        assert result.exit_code == 0
        assert result.summary.status is RunStatus.PARTIAL_SUCCESS
        assert result.summary.failed_identifiers == ["Files"]
        assert subjects(notifier) == ["Paymo Backup - Partial Success"]

    def test_every_endpoint_failing_is_total_failure(self, config, notifier):
        session = routed_session(
            {"/me": make_response(body={"id": 1})},
            default=make_response(status_code=503),
        )
        job = PaymoBackupJob(config, notifier, session, now=MONDAY)

        result = run_job(job, now=MONDAY)

        assert result.exit_code == 1
        assert result.summary.status is RunStatus.TOTAL_FAILURE
        assert subjects(notifier) == ["Paymo Backup - ERROR"]

    def test_weekly_mode_is_quiet_on_tuesday(self, config, notifier):
        config = replace(config, success_notifications="weekly")
        session = routed_session({"/me": make_response(body={"id": 1})})
        job = PaymoBackupJob(config, notifier, session)

        result = run_job(job, now=datetime(2025, 3, 11, 2, 0, 0))

        assert result.exit_code == 0
        notifier.send.assert_not_called()

    def test_notification_failure_does_not_change_exit_code(self, config, notifier):
        notifier.send.return_value = False
        session = routed_session({"/me": make_response(body={"id": 1})})

        result = run_job(PaymoBackupJob(config, notifier, session), now=MONDAY)

        assert result.exit_code == 0

    def test_connectivity_failure(self, config, notifier):
        session = routed_session({"/me": make_response(status_code=401, body={"message": "Unauthorized"})})
        job = PaymoBackupJob(config, notifier, session)

        result = run_job(job, now=MONDAY)

        assert result.exit_code == 1
        assert result.summary is None
        assert subjects(notifier) == ["Paymo Backup - Precondition Error"]
        assert session.get.call_count == 1
        assert list(config.paymo_history_dir.glob("*.json")) == []
        assert not config.lock_path("paymo").exists()

    def test_missing_credentials(self, config, notifier):
        config = replace(config, paymo_api_key="")
        session = routed_session({})

        result = run_job(PaymoBackupJob(config, notifier, session), now=MONDAY)

        assert result.exit_code == 1
        assert subjects(notifier) == ["Paymo Backup - Precondition Error"]
        session.get.assert_not_called()

    def test_already_running_is_a_silent_no_op(self, config, notifier):
        lock = config.lock_path("paymo")
        lock.parent.mkdir(parents=True)
        lock.write_text("4242\n")
        session = routed_session({})

        with patch("nas_sync.lock.is_alive", return_value=True):
            result = run_job(PaymoBackupJob(config, notifier, session), now=MONDAY)

        assert result == JobResult(exit_code=0, skipped=True)
        session.get.assert_not_called()
        notifier.send.assert_not_called()
        assert lock.read_text() == "4242\n"

    def test_lock_released_when_sync_raises(self, config, notifier):
        session = routed_session({"/me": make_response(body={"id": 1})})
        job = PaymoBackupJob(config, notifier, session)

        with patch.object(job, "sync", side_effect=RuntimeError("bug")):
            with pytest.raises(RuntimeError):
                run_job(job, now=MONDAY)

        assert not config.lock_path("paymo").exists()


class TestGitHubRun:
    def test_forks_and_archived_are_skipped(self, config, notifier):
        session = routed_session({
            "/user": make_response(body={"login": "octocat"}),
            "/user/repos": lambda: pages.pop(0),
        })
        pages = [
            make_response(body=[repo("site"), repo("forked", fork=True)]),
            make_response(body=[repo("legacy", archived=True)]),
        ]
        git = MagicMock(spec=GitHandler)
        job = GitHubBackupJob(config, notifier, session)

        with patch.object(job, "build_archive", return_value=MirrorArchive(config, git)), \
                patch("nas_sync.runner.shutil.which", return_value="/usr/bin/git"):
            result = run_job(job, now=MONDAY)

        assert result.exit_code == 0
        assert (result.summary.created, result.summary.skipped) == (1, 2)
        git.clone.assert_called_once_with(
            "https://github.com/octocat/site.git",
            config.github_backup_dir / "site",
        )
        assert (config.github_report_dir / "github_summary_2025-03-10_02-00-00.txt").exists()

    def test_missing_git_binary(self, config, notifier):
        job = GitHubBackupJob(config, notifier, routed_session({}))

        with patch("nas_sync.runner.shutil.which", return_value=None):
            result = run_job(job, now=MONDAY)

        assert result.exit_code == 1
        assert subjects(notifier) == ["GitHub Sync - Precondition Error"]


def test_check_prerequisites_creates_directories(config):
    job = PaymoBackupJob(config, MagicMock(spec=MailNotifier), routed_session({}))

    check_prerequisites(job)

    assert config.paymo_history_dir.is_dir()
    assert config.paymo_report_dir.is_dir()


def test_run_all_continues_after_a_failure():
    first, second = MagicMock(), MagicMock()
    first.name, second.name = "github", "paymo"

    with patch("nas_sync.runner.run_job", side_effect=[RuntimeError("boom"), JobResult(exit_code=0)]) as run:
        results = run_all([first, second])

    assert run.call_count == 2
    assert [result.exit_code for result in results] == [1, 0]


def test_backup_job_subclass_must_implement_every_step(config):
    class WithoutSync(BackupJob):
        archive_root = report_dir = config.paymo_history_dir

        def check_credentials(self):
            pass

        def check_connectivity(self):
            pass

        def build_archive(self, run_timestamp):
            return None

    with pytest.raises(TypeError):
        WithoutSync(config, MagicMock(spec=MailNotifier))
