"""Domain profile and analysis models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ..agent.runner import DEFAULT_ALLOWED_TOOLS
from ..transcripts.events import TranscriptAnalysis


class DomainProfile(BaseModel):
    """Configuration describing what a domain analyzes and how it instructs the agent."""

    id: str = Field(..., description="Unique identifier for the domain.")
    name: str = Field(..., description="Display name used in logs, commits and review titles.")
    description: str = Field(default="", description="What the domain improves.")
    system_prompt: str = Field(
        ...,
        description="Instructions appended to the agent's system prompt for this domain.",
    )
    allowed_tools: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS),
        description="Tools the agent may use while working on this domain.",
    )
    recommended_model: str | None = Field(
        default=None,
        description="Model used when no model is configured explicitly.",
    )
    focus: list[str] = Field(
        default_factory=list,
        description="Ordered instructions closing the user prompt.",
    )
    activation: Literal["always", "transcript", "changes"] = Field(
        default="always",
        description="When the domain runs: always, only with a transcript, or only with changed files.",
    )
    enabled: bool = Field(default=True, description="Disabled domains are never run.")

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Domain id must not be empty")
        return normalized

    @field_validator("allowed_tools", "focus", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("allowed_tools and focus must be sequences of strings")


@dataclass(frozen=True, slots=True)
class CycleContext:
    """Read-only inputs gathered for one analysis cycle."""

    project_path: Path
    changed_files: tuple[str, ...] = ()
    transcript_path: Path | None = None
    transcript_content: str | None = None
    git_log: str | None = None
    git_diff_stat: str | None = None
    analysis: TranscriptAnalysis | None = None


@dataclass(slots=True)
class AnalysisResult:
    """Rendered instructions for the agent produced by a domain."""

    user_prompt: str
    system_prompt_append: str
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    recommended_model: str | None = None


__all__ = ["AnalysisResult", "CycleContext", "DomainProfile"]
