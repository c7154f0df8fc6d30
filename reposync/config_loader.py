"""
Configuration loader for REPOSYNC.
Merges built-in defaults with an optional user config.yaml.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from reposync.credentials import Credentials


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class SyncConfig(BaseModel):
    interval_minutes: float = 10
    max_push_retries: int = 3
    retry_backoff_seconds: float = 1.0
    command_timeout: float = 120
    git_binary: str = "git"
    conflict_markers: list[str] = Field(
        default_factory=lambda: ["CONFLICT", "merge conflict", "Automatic merge failed"]
    )
    rejection_markers: list[str] = Field(
        default_factory=lambda: ["[rejected]", "fetch first", "non-fast-forward", "Updates were rejected"]
    )
    nothing_to_commit_markers: list[str] = Field(
        default_factory=lambda: ["nothing to commit", "nothing added to commit"]
    )


class MemoryConfig(BaseModel):
    directory: str = "~/.reposync/memory"
    agent_name: str = "git_sync_agent"
    max_sessions: int | None = None


class ReportingConfig(BaseModel):
    enabled: bool = True
    issues_dir: str = "~/.reposync/issues"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_file: str | None = None


class ReposyncConfig(BaseModel):
    sync: SyncConfig = Field(default_factory=SyncConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def memory_dir(self) -> Path:
        return Path(self.memory.directory).expanduser()

    @property
    def issues_dir(self) -> Path:
        return Path(self.reporting.issues_dir).expanduser()


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None) -> ReposyncConfig:
    """
    Load config by merging:
      1. Built-in defaults (reposync/config.yaml)
      2. User overrides (config_path, or $REPOSYNC_CONFIG)
    """
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    if config_path is None and os.environ.get("REPOSYNC_CONFIG"):
        config_path = Path(os.environ["REPOSYNC_CONFIG"])

    if config_path:
        config_path = config_path.expanduser()
        if config_path.exists():
            with open(config_path, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    return ReposyncConfig(**base)


def load_credentials() -> Credentials:
    """Read GIT_USERNAME / GIT_EMAIL / GIT_TOKEN once."""
    return Credentials.from_env()


def validate_credentials() -> dict[str, bool]:
    """Check which git credentials are available."""
    return {
        "GIT_USERNAME": bool(os.environ.get("GIT_USERNAME")),
        "GIT_EMAIL":    bool(os.environ.get("GIT_EMAIL")),
        "GIT_TOKEN":    bool(os.environ.get("GIT_TOKEN")),
    }
