"""
REPOSYNC Controller — the lifecycle.

Responsibilities:
  - Open a memory session on start, close it on stop
  - Own the single active-project pointer
  - Drive the periodic timer that triggers unattended cycles
  - Serialize cycles so a caller and the timer never overlap
  - Hand every cycle to the SyncEngine

It never talks to git directly. It only coordinates.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Literal

from loguru import logger

from reposync.config_loader import ReposyncConfig, load_credentials
from reposync.credentials import Credentials
from reposync.engine import SyncEngine
from reposync.errors import ConfigurationError, ReposyncError
from reposync.memory import MemoryStore
from reposync.reporter import IssueReporter, NullReporter
from reposync.runner import GitError, GitRunner
from reposync.state import ActiveProject, SyncResult

TIMER_JOIN_SECONDS = 5.0


class Controller:
    """
    Starts and stops the sync engine and decides when it runs.

    start()/stop() are idempotent. Cycles only run while started,
    and only when a project is active.
    """

    def __init__(
        self,
        engine: SyncEngine,
        memory: MemoryStore,
        interval_seconds: float = 600,
    ):
        self.engine = engine
        self.memory = memory
        self.interval_seconds = interval_seconds

        self._project: ActiveProject | None = None
        self._session_id: str | None = None
        self._active = False

        self._state_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._timer: threading.Thread | None = None

    @classmethod
    def from_config(cls, config: ReposyncConfig, credentials: Credentials | None = None) -> "Controller":
        """Wire runner, memory, reporter and engine from a loaded config."""
        credentials = credentials or load_credentials()
        runner = GitRunner(binary=config.sync.git_binary, timeout=config.sync.command_timeout)
        memory = MemoryStore(
            config.memory_dir,
            agent_name=config.memory.agent_name,
            max_sessions=config.memory.max_sessions,
        )
        reporter = IssueReporter(config.issues_dir) if config.reporting.enabled else NullReporter()
        engine = SyncEngine(
            runner=runner,
            memory=memory,
            credentials=credentials,
            config=config.sync,
            reporter=reporter,
        )
        return cls(engine, memory, interval_seconds=config.sync.interval_minutes * 60)

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._active

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def active_project(self) -> ActiveProject | None:
        return self._project

    def status(self) -> dict[str, Any]:
        project = self._project
        last = self.engine.last_result
        return {
            "active": self._active,
            "session_id": self._session_id,
            "project_path": str(project.path) if project else None,
            "is_git_repository": project.is_git_repository if project else False,
            "engine_state": self.engine.state.value,
            "interval_seconds": self.interval_seconds,
            "last_result": last.to_record() if last else None,
        }

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def start(self, run_immediately: bool = True, schedule: bool = True) -> None:
        with self._state_lock:
            if self._active:
                logger.info("[CONTROLLER] Already running")
                return

            logger.info("[CONTROLLER] Starting git sync")
            self.engine.credentials.warn_if_incomplete()
            self._session_id = self.memory.open_session()
            self._active = True

            if self._project and self._project.is_git_repository:
                self._configure(self._project)

            if schedule:
                self._stop_event = threading.Event()
                self._timer = threading.Thread(
                    target=self._timer_loop,
                    args=(self._stop_event,),
                    name="reposync-timer",
                    daemon=True,
                )
                self._timer.start()
                logger.info(f"[CONTROLLER] Sync scheduled every {self.interval_seconds / 60:g} minutes")

            project = self._project

        if run_immediately and project is not None:
            try:
                self.sync_repository()
            except ReposyncError as e:
                logger.error(f"[CONTROLLER] Initial sync failed: {e}")

    def stop(self) -> None:
        with self._state_lock:
            if not self._active:
                logger.info("[CONTROLLER] Already stopped")
                return

            logger.info("[CONTROLLER] Stopping git sync")
            if self._stop_event:
                self._stop_event.set()
            timer = self._timer
            self._stop_event = None
            self._timer = None

            session_id = self._session_id
            self._session_id = None
            self._active = False

        # An in-flight cycle is not cancelled; wait for it only briefly.
        if timer is not None and timer is not threading.current_thread():
            timer.join(timeout=TIMER_JOIN_SECONDS)
            if timer.is_alive():
                logger.warning("[CONTROLLER] Timer thread still finishing a cycle")

        if session_id:
            try:
                self.memory.close_session(session_id, description="git sync session ended")
            except ReposyncError as e:
                logger.error(f"[CONTROLLER] Could not close session {session_id}: {e}")

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def set_project_path(self, path: Path | str) -> ActiveProject:
        """Swap the active project. Does not trigger a cycle."""
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_dir():
            raise ConfigurationError(f"Project path does not exist: {resolved}")

        project = ActiveProject(path=resolved)
        is_repo = project.is_git_repository
        if not is_repo:
            logger.warning(f"[CONTROLLER] {resolved} is not a git repository (use init to bootstrap it)")

        with self._state_lock:
            self._project = project
            session_id = self._session_id
            if self._active and is_repo:
                self._configure(project)

        logger.info(f"[CONTROLLER] Active project: {resolved}")

        if session_id:
            try:
                self.memory.append_action(
                    session_id,
                    "set_project_path",
                    {"project_path": str(resolved)},
                    {"success": True, "is_git_repository": is_repo},
                )
            except ReposyncError as e:
                logger.error(f"[CONTROLLER] Could not record project change: {e}")

        return project

    def sync_repository(self, trigger: Literal["manual", "timer"] = "manual") -> SyncResult:
        project, session_id = self._require_running()
        with self._cycle_lock:
            return self.engine.sync(project, session_id, trigger=trigger)

    def init_repository(self, remote_url: str | None, branch: str = "main") -> dict[str, Any]:
        project, session_id = self._require_running()
        with self._cycle_lock:
            return self.engine.init(project, session_id, remote_url, branch)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _require_running(self) -> tuple[ActiveProject, str]:
        with self._state_lock:
            project = self._project
            session_id = self._session_id
            active = self._active

        if project is None:
            raise ConfigurationError("No active project set")
        if not active or session_id is None:
            raise ConfigurationError("Git sync is not started")
        return project, session_id

    def _configure(self, project: ActiveProject) -> None:
        try:
            self.engine.configure_repository(project.path)
        except GitError as e:
            logger.warning(f"[CONTROLLER] Could not configure git in {project.path}: {e}")

    def _timer_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            if self._project is None:
                logger.debug("[CONTROLLER] Timer tick skipped, no active project")
                continue
            try:
                self.sync_repository(trigger="timer")
            except ReposyncError as e:
                logger.error(f"[CONTROLLER] Periodic sync failed: {e}")
            except Exception:
                logger.exception("[CONTROLLER] Periodic sync crashed")
        logger.debug("[CONTROLLER] Timer disarmed")
