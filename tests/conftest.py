"""
Shared fixtures: a scripted stand-in for the git client, a throwaway
memory store, and a project directory that looks like a repository.
"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from loguru import logger

from reposync.config_loader import SyncConfig
from reposync.credentials import Credentials
from reposync.engine import SyncEngine
from reposync.memory import MemoryStore
from reposync.runner import GitCommandError
from reposync.state import ActiveProject


class FakeRunner:
    """
    Answers git calls from a script keyed by argument prefix.

    Each key maps to a queue of outcomes: strings are returned as
    stdout, exceptions are raised. The last outcome in a queue
    repeats forever. Unscripted calls return "".
    """

    def __init__(self):
        self.calls: list[tuple[list[str], Path]] = []
        self._script: dict[tuple[str, ...], list] = {}
        self._lock = threading.Lock()

    def on(self, *prefix: str, outcomes: list) -> "FakeRunner":
        self._script[tuple(prefix)] = list(outcomes)
        return self

    def run(self, args, cwd, timeout=None) -> str:
        args = [str(a) for a in args]
        with self._lock:
            self.calls.append((args, Path(cwd)))
            queue = self._match(args)
            if not queue:
                return ""
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def commands(self, name: str) -> list[list[str]]:
        return [args for args, _ in self.calls if args[0] == name]

    def _match(self, args: list[str]):
        best = None
        for prefix in self._script:
            if tuple(args[:len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        return self._script[best] if best is not None else None


class RecordingReporter:
    def __init__(self):
        self.reports: list[tuple[str, dict]] = []

    def report_issue(self, event_type, payload):
        self.reports.append((event_type, payload))


def git_failure(*args: str, stderr: str = "", stdout: str = "", code: int = 1) -> GitCommandError:
    return GitCommandError(list(args), code, stderr=stderr, stdout=stdout)


@pytest.fixture(autouse=True)
def _quiet_logs():
    """Keep loguru from writing to stderr during tests."""
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def memory(tmp_path):
    return MemoryStore(tmp_path / "memory")


@pytest.fixture
def repo_dir(tmp_path):
    """A directory with a .git marker; enough for is_git_repository."""
    path = tmp_path / "project"
    (path / ".git").mkdir(parents=True)
    return path


@pytest.fixture
def project(repo_dir):
    return ActiveProject(path=repo_dir)


@pytest.fixture
def credentials():
    return Credentials(username="alice", email="alice@example.com", token="s3cret")


@pytest.fixture
def engine(fake_runner, memory, credentials, reporter):
    return SyncEngine(
        runner=fake_runner,
        memory=memory,
        credentials=credentials,
        config=SyncConfig(retry_backoff_seconds=0),
        reporter=reporter,
    )
