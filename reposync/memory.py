"""
REPOSYNC Memory — the append-only audit log.

One JSON document per agent identity, holding every session and
the actions performed inside it. The document is read whole and
written whole on every mutation: no batching, so a crash loses at
most the call that was in flight.

Later cycles consult it to spot files that keep conflicting.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from loguru import logger
from pydantic import ValidationError

from reposync.errors import SessionError
from reposync.state import (
    SYNC_ACTION_TYPES,
    Action,
    ActionType,
    AgentMemory,
    PriorConflict,
    Session,
    SessionSummary,
    utc_now,
)

ABANDONED_DESCRIPTION = "abandoned: process exited without stopping"


class MemoryStore:
    """Durable per-agent record of sessions and actions."""

    def __init__(self, memory_dir: Path, agent_name: str = "git_sync_agent", max_sessions: int | None = None):
        self.memory_dir = Path(memory_dir).expanduser()
        self.agent_name = agent_name
        self.max_sessions = max_sessions
        self.path = self.memory_dir / f"{agent_name}.json"
        self._lock = threading.RLock()
        self._memory = self._load()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(self) -> str:
        """Open a new active session, first closing any left open by a process that never stopped."""
        with self._lock:
            self._close_abandoned()
            self._apply_retention()
            session = Session()
            self._memory.sessions[session.id] = session
            self._persist()
        logger.info(f"[MEMORY] Opened session {session.id}")
        return session.id

    def close_session(self, session_id: str, description: str = "") -> Session:
        with self._lock:
            session = self._require_session(session_id)
            self._finish(session, utc_now(), description)
            self._persist()
        logger.info(f"[MEMORY] Closed session {session_id} ({len(session.actions)} actions)")
        return session

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._memory.sessions.get(session_id)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._memory.sessions.values())

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def append_action(
        self,
        session_id: str,
        action_type: ActionType,
        parameters: dict[str, Any] | None = None,
        result: dict[str, Any] | None = None,
    ) -> Action:
        with self._lock:
            session = self._require_session(session_id)
            if not session.is_open:
                raise SessionError(f"Session {session_id} is closed; actions are append-only to the open session")

            action = Action(
                type=action_type,
                parameters=parameters or {},
                result=result if result is not None else {"success": True},
            )
            session.actions.append(action)

            stats = self._memory.stats
            stats.total_actions += 1
            stats.last_action_time = action.timestamp
            if action.succeeded:
                stats.success_count += 1
                stats.last_success = action.timestamp
            else:
                stats.failure_count += 1
                stats.last_failure = action.timestamp

            self._persist()
        return action

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_conflicts_touching(self, file_paths: Iterable[str]) -> list[PriorConflict]:
        """
        Prior merge_conflict actions whose conflicted files overlap file_paths.

        Ordered by discovery (session order, then action order), not by
        recency. Callers that want newest-first must sort.
        """
        wanted = list(dict.fromkeys(file_paths))
        if not wanted:
            return []

        matches: list[PriorConflict] = []
        with self._lock:
            for session in self._memory.sessions.values():
                for action in session.actions:
                    if action.type != "merge_conflict":
                        continue
                    previous = action.result.get("conflicted_files") or []
                    overlap = [f for f in wanted if f in previous]
                    if overlap:
                        matches.append(PriorConflict(
                            timestamp=action.timestamp,
                            session_id=session.id,
                            files=overlap,
                        ))
        return matches

    def last_successful_sync(self, project_path: str) -> Action | None:
        """Most recent successful sync action for a project."""
        latest: Action | None = None
        with self._lock:
            for session in self._memory.sessions.values():
                for action in session.actions:
                    if (
                        action.type in SYNC_ACTION_TYPES
                        and action.succeeded
                        and action.parameters.get("project_path") == project_path
                    ):
                        if latest is None or action.timestamp > latest.timestamp:
                            latest = action
        return latest

    def search(self, query: str, limit: int = 20) -> list[dict[str, Any]]:
        """Case-insensitive substring search over serialized actions, newest first."""
        needle = query.lower()
        found: list[dict[str, Any]] = []
        with self._lock:
            for session in self._memory.sessions.values():
                for action in session.actions:
                    if needle in action.model_dump_json().lower():
                        found.append({
                            "session_id": session.id,
                            "action_id": action.id,
                            "type": action.type,
                            "timestamp": action.timestamp,
                            "success": action.succeeded,
                        })
        found.sort(key=lambda item: item["timestamp"], reverse=True)
        return found[:limit]

    def recent_sessions(self, limit: int = 10) -> list[Session]:
        with self._lock:
            ordered = sorted(self._memory.sessions.values(), key=lambda s: s.start_time, reverse=True)
        return ordered[:limit]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            data = self._memory.stats.model_dump()
            data["sessions_stored"] = len(self._memory.sessions)
            data["actions_stored"] = sum(len(s.actions) for s in self._memory.sessions.values())
        data["success_rate"] = self.success_rate()
        return data

    def success_rate(self) -> int:
        stats = self._memory.stats
        total = stats.success_count + stats.failure_count
        if total == 0:
            return 100
        return round(stats.success_count / total * 100)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> AgentMemory:
        if not self.path.exists():
            logger.info(f"[MEMORY] No previous memory for {self.agent_name}, starting fresh")
            return AgentMemory(agent_name=self.agent_name)

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return AgentMemory.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"[MEMORY] Could not load {self.path} ({e}); treating as empty")
            return AgentMemory(agent_name=self.agent_name)

    def _persist(self) -> None:
        self._memory.last_updated = utc_now()
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        payload = self._memory.model_dump_json(indent=2)

        fd, tmp = tempfile.mkstemp(prefix=f".{self.agent_name}.", suffix=".json", dir=self.memory_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _require_session(self, session_id: str) -> Session:
        session = self._memory.sessions.get(session_id)
        if session is None:
            raise SessionError(f"Unknown session: {session_id}")
        return session

    def _finish(self, session: Session, end_time: str, description: str) -> None:
        session.end_time = end_time
        session.status = "completed"

        successes = sum(1 for a in session.actions if a.succeeded)
        session.summary = SessionSummary(
            actions_count=len(session.actions),
            success_count=successes,
            failure_count=len(session.actions) - successes,
            duration_seconds=_duration_seconds(session.start_time, end_time),
            description=description,
        )
        self._memory.stats.total_sessions += 1

    def _close_abandoned(self) -> None:
        # Ends at its last recorded activity; the real exit time is unknown.
        for session in self._memory.sessions.values():
            if not session.is_open:
                continue
            last_seen = session.actions[-1].timestamp if session.actions else session.start_time
            self._finish(session, last_seen, ABANDONED_DESCRIPTION)
            logger.warning(f"[MEMORY] Session {session.id} was never stopped; marked completed")

    def _apply_retention(self) -> None:
        if not self.max_sessions:
            return
        completed = [s for s in self._memory.sessions.values() if not s.is_open]
        excess = len(self._memory.sessions) + 1 - self.max_sessions
        for session in sorted(completed, key=lambda s: s.start_time)[:max(0, excess)]:
            del self._memory.sessions[session.id]
            logger.debug(f"[MEMORY] Pruned session {session.id}")


def _duration_seconds(start: str, end: str) -> int:
    try:
        return int((datetime.fromisoformat(end) - datetime.fromisoformat(start)).total_seconds())
    except ValueError:
        return 0
