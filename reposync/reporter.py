"""
Issue reporting for conflicts and failed cycles.

Each report lands twice: a standalone <id>.json for humans and a
line in issues.jsonl, the append-only audit trail of everything
ever reported.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Literal, Protocol

from loguru import logger
from pydantic import BaseModel, Field

from reposync.state import utc_now


class IssueReport(BaseModel):
    id: str = Field(default_factory=lambda: f"issue_{uuid.uuid4()}")
    type: str
    timestamp: str = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)
    status: Literal["reported"] = "reported"


class Reporter(Protocol):
    def report_issue(self, event_type: str, payload: dict[str, Any]) -> Any:
        ...


class IssueReporter:
    """Writes issue reports to a directory on disk."""

    def __init__(self, issues_dir: Path):
        self.issues_dir = Path(issues_dir).expanduser()
        self.log_path = self.issues_dir / "issues.jsonl"

    def report_issue(self, event_type: str, payload: dict[str, Any]) -> IssueReport:
        report = IssueReport(type=event_type, data=payload)
        self.issues_dir.mkdir(parents=True, exist_ok=True)

        (self.issues_dir / f"{report.id}.json").write_text(
            report.model_dump_json(indent=2), encoding="utf-8"
        )
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(report.model_dump_json() + "\n")

        logger.info(f"[REPORTER] {event_type} reported as {report.id}")
        return report

    def history(self, event_type: str | None = None) -> list[IssueReport]:
        """All reports from the JSONL log, oldest first."""
        if not self.log_path.exists():
            return []

        reports = []
        with open(self.log_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    report = IssueReport.model_validate(json.loads(line))
                except ValueError:
                    logger.warning("[REPORTER] Skipping unreadable line in issues.jsonl")
                    continue
                if event_type is None or report.type == event_type:
                    reports.append(report)
        return reports


class NullReporter:
    """Reporter used when reporting is disabled in config."""

    def report_issue(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.debug(f"[REPORTER] Reporting disabled; dropped {event_type}")
        return None
