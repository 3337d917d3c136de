"""Data models for persistent tracking."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field


class DaemonRecord(BaseModel):
    """Machine-wide record of the running watch daemon."""

    pid: int
    started_at: datetime
    project_path: str
    wait: timedelta
    auto_apply: bool = False


class PendingImprovement(BaseModel):
    """An improvement proposed for review but not yet merged."""

    type: str
    description: str
    detected: datetime
    pr_url: str | None = None


class AnalysisRecord(BaseModel):
    """Append-only history entry written once per cycle."""

    timestamp: datetime
    transcript_id: str
    patterns_detected: list[str] = Field(default_factory=list)
    changes_applied: list[str] = Field(default_factory=list)
    pr_url: str | None = None


class ProjectState(BaseModel):
    """Per-project status that is merged, never replaced, on every cycle."""

    project_path: str
    last_analysis: datetime | None = None
    next_scheduled: datetime | None = None
    current_branch: str | None = None
    pending: list[PendingImprovement] = Field(default_factory=list)
    history: list[AnalysisRecord] = Field(default_factory=list)


__all__ = ["AnalysisRecord", "DaemonRecord", "PendingImprovement", "ProjectState"]
