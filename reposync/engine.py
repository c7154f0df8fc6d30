"""
REPOSYNC Engine — one synchronization cycle, start to finish.

It is NOT clever. It is ordered:

    validate → pull → status → add → commit → push

Responsibilities:
  - Run every git call against the project directory explicitly
    (the process cwd is never touched)
  - Classify raw git failures: conflict, push rejection, transient
  - Recover from push rejection with a bounded pull-then-retry
  - Synthesize commit messages from the changed files
  - Record exactly one action per cycle in the memory store
  - Cross-reference conflicts against history and report them

The engine never decides *when* to sync. That is the controller's job.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from reposync.config_loader import SyncConfig
from reposync.credentials import Credentials, authenticated_url, redact_url
from reposync.errors import ConfigurationError, ReposyncError
from reposync.memory import MemoryStore
from reposync.reporter import NullReporter, Reporter
from reposync.runner import GitCommandError, GitError, GitRunner
from reposync.state import ActiveProject, ChangeCounts, ConflictReport, SyncResult, utc_now

FALLBACK_COMMIT_MESSAGE = "Automatic update: no file changes"
INITIAL_COMMIT_MESSAGE = "Initial commit"
CREDENTIAL_HELPER = "cache --timeout=3600"

PULL_ARGS = ["pull", "--no-rebase", "--no-edit"]

_STATUS_LINE = re.compile(r"^(?P<code>[ MADRCUT?!]{1,2})\s+(?P<path>.+)$")


class SyncState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PULLING = "pulling"
    CLEAN = "clean"
    CHECKING_CHANGES = "checking_changes"
    COMMITTING = "committing"
    PUSHING = "pushing"
    CONFLICTED = "conflicted"
    FAILED = "failed"


class PushRejectedError(GitCommandError):
    """The remote has work we do not; pull and try again."""

    @classmethod
    def from_error(cls, error: GitCommandError) -> "PushRejectedError":
        return cls(error.git_args, error.exit_code, error.stderr, error.stdout)


class PushRetryExhaustedError(ReposyncError):
    """Push kept being rejected after every recovery pull."""

    def __init__(self, retries: int, last_error: GitCommandError):
        self.retries = retries
        self.last_error = last_error
        super().__init__(
            f"Push still rejected after {retries} recovery pull(s); exceeded retry budget: {last_error.output}"
        )


class MergeConflictError(ReposyncError):
    """git stopped on unresolved conflicts. Never resolved automatically."""

    def __init__(self, report: ConflictReport):
        self.report = report
        files = ", ".join(report.conflicted_files) or "unknown files"
        super().__init__(f"Merge conflict during {report.operation} in {files}: {report.error}")

    @property
    def conflicted_files(self) -> list[str]:
        return self.report.conflicted_files

    @property
    def previous_conflicts(self) -> list:
        return self.report.previous_conflicts


# ---------------------------------------------------------------------------
# Commit message synthesis
# ---------------------------------------------------------------------------

def _trailing_filename(status_line: str) -> str:
    """The file a porcelain status line is about (the new name, for renames)."""
    line = status_line.rstrip()
    match = _STATUS_LINE.match(line)
    path = match.group("path") if match else line.strip()
    if " -> " in path:
        path = path.split(" -> ")[-1]
    return path.strip().strip('"')


def _extension(filename: str) -> str:
    suffix = Path(filename).suffix
    return suffix[1:] if suffix else "other"


def build_commit_message(status_lines: list[str]) -> str:
    """
    "Automatic update: 3 files changed (2 js, 1 py)"

    Top three extensions by count; ties keep the order they were first seen.
    """
    files = [_trailing_filename(line) for line in status_lines if line.strip()]
    if not files:
        return FALLBACK_COMMIT_MESSAGE

    counts: dict[str, int] = {}
    for name in files:
        ext = _extension(name)
        counts[ext] = counts.get(ext, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: -item[1])[:3]
    breakdown = ", ".join(f"{count} {ext}" for ext, count in ranked)
    return f"Automatic update: {len(files)} files changed ({breakdown})"


def count_changes(status_lines: list[str]) -> ChangeCounts:
    counts = ChangeCounts()
    for line in status_lines:
        match = _STATUS_LINE.match(line.rstrip())
        if not match:
            continue
        code = match.group("code").strip()
        if code == "??" or "A" in code:
            counts.added += 1
        elif "D" in code:
            counts.deleted += 1
        elif code:
            counts.modified += 1
    return counts


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SyncEngine:
    """
    Runs sync and bootstrap cycles for whatever project it is handed.

    Holds no project of its own: the controller passes the active
    project and open session into every call.
    """

    def __init__(
        self,
        runner: GitRunner,
        memory: MemoryStore,
        credentials: Credentials | None = None,
        config: SyncConfig | None = None,
        reporter: Reporter | None = None,
    ):
        self.runner = runner
        self.memory = memory
        self.credentials = credentials or Credentials()
        self.config = config or SyncConfig()
        self.reporter = reporter or NullReporter()
        self.state = SyncState.IDLE
        self.last_result: SyncResult | None = None

    # -----------------------------------------------------------------------
    # Sync cycle
    # -----------------------------------------------------------------------

    def sync(
        self,
        project: ActiveProject,
        session_id: str,
        trigger: Literal["manual", "timer"] = "manual",
    ) -> SyncResult:
        cwd = project.path
        action_type = "auto_sync" if trigger == "timer" else "sync_repository"
        parameters = {"project_path": str(cwd), "trigger": trigger}
        result = SyncResult(project_path=str(cwd), trigger=trigger)

        logger.info(f"[SYNC] Starting {trigger} sync for {cwd}")
        previous = self.memory.last_successful_sync(str(cwd))
        if previous:
            logger.info(f"[SYNC] Last successful sync of this project: {previous.timestamp}")

        try:
            self._enter(SyncState.VALIDATING)
            if not project.is_git_repository:
                raise ConfigurationError(f"{cwd} is not a git repository")

            self._enter(SyncState.PULLING)
            self._git(PULL_ARGS, cwd)

            self._enter(SyncState.CHECKING_CHANGES)
            status = self._git(["status", "--porcelain"], cwd)
            if not status:
                self._enter(SyncState.CLEAN)
                logger.info("[SYNC] No local changes, project is up to date")
                result.success = True
                self._record(session_id, action_type, parameters, result.to_record())
                self._enter(SyncState.IDLE)
                self.last_result = result
                return result

            lines = status.splitlines()
            result.has_changes = True
            result.changes = count_changes(lines)
            result.commit_message = build_commit_message(lines)

            self._enter(SyncState.COMMITTING)
            self._git(["add", "-A"], cwd)
            result.committed = self._commit(cwd, result.commit_message)

            self._enter(SyncState.PUSHING)
            result.recovery_pulls = self._push_with_recovery(cwd, self._push_args(cwd))
            result.pushed = True
            result.success = True

        except GitCommandError as e:
            if self.is_conflict(e):
                raise self._handle_conflict(project, session_id, e, trigger) from e
            self._fail(session_id, action_type, parameters, result, e)
            raise
        except ReposyncError as e:
            self._fail(session_id, action_type, parameters, result, e)
            raise

        logger.info(f"[SYNC] Sync complete: {result.commit_message} (pushed)")
        self._record(session_id, action_type, parameters, result.to_record())
        self._enter(SyncState.IDLE)
        self.last_result = result
        return result

    # -----------------------------------------------------------------------
    # Bootstrap
    # -----------------------------------------------------------------------

    def init(
        self,
        project: ActiveProject,
        session_id: str,
        remote_url: str | None,
        branch: str = "main",
    ) -> dict[str, Any]:
        """One-time bootstrap of a plain directory into a pushed repository."""
        cwd = project.path
        if project.is_git_repository:
            raise ConfigurationError(f"{cwd} is already a git repository")

        parameters = {
            "project_path": str(cwd),
            "remote_url": redact_url(remote_url) if remote_url else None,
            "branch": branch,
        }
        outcome: dict[str, Any] = {"success": False, "branch": branch, "pushed": False, "recovery_pulls": 0}
        logger.info(f"[SYNC] Initializing git repository in {cwd}")

        try:
            self._git(["init"], cwd)
            self.configure_repository(cwd)
            self._git(["add", "-A"], cwd)
            outcome["committed"] = self._commit(cwd, INITIAL_COMMIT_MESSAGE)

            if remote_url:
                self._git(["remote", "add", "origin", self.credentials.authenticated_url(remote_url)], cwd)

            self._git(["branch", "-M", branch], cwd)

            if remote_url:
                outcome["recovery_pulls"] = self._push_with_recovery(
                    cwd, ["push", "--set-upstream", "origin", branch]
                )
                outcome["pushed"] = True
            outcome["success"] = True

        except GitCommandError as e:
            if self.is_conflict(e):
                raise self._handle_conflict(project, session_id, e, "manual") from e
            outcome["error"] = str(e)
            self._record(session_id, "init_repository", parameters, outcome)
            logger.error(f"[SYNC] Repository init failed: {e}")
            raise
        except ReposyncError as e:
            outcome["error"] = str(e)
            self._record(session_id, "init_repository", parameters, outcome)
            logger.error(f"[SYNC] Repository init failed: {e}")
            raise

        self._record(session_id, "init_repository", parameters, outcome)
        logger.info(f"[SYNC] Repository initialized on branch {branch}")
        return outcome

    def configure_repository(self, cwd: Path) -> None:
        """Set identity and the caching credential helper on the repository."""
        if self.credentials.username:
            self._git(["config", "user.name", self.credentials.username], cwd)
        if self.credentials.email:
            self._git(["config", "user.email", self.credentials.email], cwd)
        if self.credentials.token:
            self._git(["config", "credential.helper", CREDENTIAL_HELPER], cwd)
        logger.debug(f"[SYNC] Git configured for {cwd}")

    # -----------------------------------------------------------------------
    # Classification
    # -----------------------------------------------------------------------

    def is_conflict(self, error: GitCommandError) -> bool:
        return _contains_any(error.output, self.config.conflict_markers)

    def is_rejection(self, error: GitCommandError) -> bool:
        return _contains_any(error.output, self.config.rejection_markers)

    # -----------------------------------------------------------------------
    # Git steps
    # -----------------------------------------------------------------------

    def _git(self, args: list[str], cwd: Path) -> str:
        return self.runner.run(args, cwd, timeout=self.config.command_timeout)

    def _commit(self, cwd: Path, message: str) -> bool:
        """Commit staged work. False when there was nothing to commit."""
        try:
            self._git(["commit", "-m", message], cwd)
            return True
        except GitCommandError as e:
            if _contains_any(e.output, self.config.nothing_to_commit_markers):
                logger.info("[SYNC] Nothing to commit")
                return False
            raise

    def _push(self, cwd: Path, push_args: list[str]) -> None:
        try:
            self._git(push_args, cwd)
        except GitCommandError as e:
            if self.is_rejection(e) and not self.is_conflict(e):
                raise PushRejectedError.from_error(e) from e
            raise

    def _push_args(self, cwd: Path) -> list[str]:
        """
        Arguments for a sync push.

        With a token, an https origin is pushed to through its
        authenticated URL so the push never depends on a cached
        credential. The URL is used for this push only and never
        written into the repository config.
        """
        if not self.credentials.token:
            return ["push"]

        try:
            origin = self._git(["remote", "get-url", "origin"], cwd)
        except GitCommandError as e:
            logger.warning(f"[SYNC] Could not resolve origin URL, pushing unauthenticated: {e}")
            return ["push"]

        target = authenticated_url(origin, self.credentials.token, self.credentials.username)
        if target == origin:
            return ["push"]
        return ["push", target, "HEAD"]

    def _push_with_recovery(self, cwd: Path, push_args: list[str]) -> int:
        """
        Push, pulling and retrying the same arguments on rejection.

        Bounded by max_push_retries recovery pulls. Returns how many
        recovery pulls it took.
        """
        retries = self.config.max_push_retries
        recovery_pulls = 0

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(retries + 1),
                wait=wait_exponential(multiplier=self.config.retry_backoff_seconds, max=10),
                retry=retry_if_exception_type(PushRejectedError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"[SYNC] Push rejected, remote has newer work. "
                            f"Pulling before retry {attempt.retry_state.attempt_number - 1}/{retries}"
                        )
                        self._git(PULL_ARGS, cwd)
                        recovery_pulls += 1
                    self._push(cwd, push_args)
        except PushRejectedError as e:
            raise PushRetryExhaustedError(retries, e) from e

        logger.info("[SYNC] Push to remote succeeded")
        return recovery_pulls

    def _conflicted_files(self, cwd: Path) -> list[str]:
        try:
            output = self._git(["diff", "--name-only", "--diff-filter=U"], cwd)
        except GitError as e:
            logger.error(f"[SYNC] Could not list conflicted files: {e}")
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    # -----------------------------------------------------------------------
    # Outcomes
    # -----------------------------------------------------------------------

    def _handle_conflict(
        self,
        project: ActiveProject,
        session_id: str,
        error: GitCommandError,
        trigger: str,
    ) -> MergeConflictError:
        self._enter(SyncState.CONFLICTED)
        cwd = project.path
        operation = error.git_args[0] if error.git_args else "git"

        files = self._conflicted_files(cwd)
        previous = self.memory.find_conflicts_touching(files)
        if previous:
            logger.warning(
                f"[SYNC] Recurring conflict: {len(previous)} earlier conflict(s) touched these files"
            )

        report = ConflictReport(
            project_path=str(cwd),
            operation=operation,
            conflicted_files=files,
            previous_conflicts=previous,
            error=error.output,
        )
        logger.error(f"[SYNC] Merge conflict during {operation}: {', '.join(files) or 'no files listed'}")

        self._record(
            session_id,
            "merge_conflict",
            {"project_path": str(cwd), "operation": operation, "trigger": trigger},
            {
                "success": False,
                "conflicted_files": files,
                "previous_conflicts": [p.model_dump() for p in previous],
                "error": error.output,
            },
        )
        self._report("git_merge_conflict", report.model_dump(mode="json"))
        return MergeConflictError(report)

    def _fail(
        self,
        session_id: str,
        action_type: str,
        parameters: dict[str, Any],
        result: SyncResult,
        error: Exception,
    ) -> None:
        self._enter(SyncState.FAILED)
        result.success = False
        result.error = str(error)
        self.last_result = result
        logger.error(f"[SYNC] Sync failed: {error}")

        self._record(session_id, action_type, parameters, result.to_record())
        if not isinstance(error, ConfigurationError):
            self._report("git_sync_failure", {
                "project_path": result.project_path,
                "error": str(error),
                "error_type": type(error).__name__,
                "timestamp": utc_now(),
            })

    def _record(self, session_id: str, action_type: str, parameters: dict[str, Any], result: dict[str, Any]) -> None:
        try:
            self.memory.append_action(session_id, action_type, parameters, result)
        except Exception as e:
            logger.error(f"[SYNC] Could not record {action_type} action: {e}")

    def _report(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            self.reporter.report_issue(event_type, payload)
        except Exception as e:
            logger.error(f"[SYNC] Could not report {event_type}: {e}")

    def _enter(self, state: SyncState) -> None:
        logger.debug(f"[SYNC] {self.state.value} → {state.value}")
        self.state = state


def _contains_any(text: str, markers: list[str]) -> bool:
    return any(marker in text for marker in markers)
