from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ActionType = Literal[
    "set_project_path",
    "sync_repository",
    "init_repository",
    "merge_conflict",
    "auto_sync",
]

SYNC_ACTION_TYPES = ("sync_repository", "auto_sync")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Action(BaseModel):
    """One audited operation. Frozen once appended."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"action_{uuid.uuid4().hex}")
    type: ActionType
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=lambda: {"success": True})
    timestamp: str = Field(default_factory=utc_now)

    @property
    def succeeded(self) -> bool:
        return bool(self.result.get("success"))


class SessionSummary(BaseModel):
    actions_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    duration_seconds: int = 0
    description: str = ""


class Session(BaseModel):
    """One start/stop lifetime of the controller."""
    id: str = Field(default_factory=lambda: f"session_{uuid.uuid4()}")
    start_time: str = Field(default_factory=utc_now)
    end_time: str | None = None
    status: Literal["active", "completed"] = "active"
    actions: list[Action] = Field(default_factory=list)
    summary: SessionSummary | None = None

    @property
    def is_open(self) -> bool:
        return self.status == "active"


class MemoryStats(BaseModel):
    total_sessions: int = 0
    total_actions: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_success: str | None = None
    last_failure: str | None = None
    last_action_time: str | None = None


class AgentMemory(BaseModel):
    """The whole persisted document for one agent identity."""
    agent_name: str
    created_at: str = Field(default_factory=utc_now)
    last_updated: str = Field(default_factory=utc_now)
    sessions: dict[str, Session] = Field(default_factory=dict)
    stats: MemoryStats = Field(default_factory=MemoryStats)


class PriorConflict(BaseModel):
    timestamp: str
    session_id: str
    files: list[str]


class ActiveProject(BaseModel):
    path: Path

    @property
    def is_git_repository(self) -> bool:
        """Re-derived on every access; the directory can change under us."""
        return (self.path / ".git").exists()


class ChangeCounts(BaseModel):
    added: int = 0
    modified: int = 0
    deleted: int = 0


class SyncResult(BaseModel):
    """Outcome of one synchronization cycle."""
    success: bool = False
    has_changes: bool = False
    project_path: str
    timestamp: str = Field(default_factory=utc_now)
    trigger: Literal["manual", "timer"] = "manual"
    commit_message: str | None = None
    committed: bool = False
    pushed: bool = False
    changes: ChangeCounts = Field(default_factory=ChangeCounts)
    recovery_pulls: int = 0
    error: str | None = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ConflictReport(BaseModel):
    """Derived view of a conflict. Never persisted as-is."""
    project_path: str
    operation: str
    conflicted_files: list[str] = Field(default_factory=list)
    previous_conflicts: list[PriorConflict] = Field(default_factory=list)
    error: str = ""
    timestamp: str = Field(default_factory=utc_now)
