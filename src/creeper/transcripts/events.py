"""Decoding of session transcripts into typed events."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(slots=True)
class TextContent:
    text: str
    type: str = "text"


@dataclass(slots=True)
class ToolUse:
    id: str
    name: str
    input: dict[str, Any]
    type: str = "tool_use"

    @property
    def bash_command(self) -> str | None:
        if self.name != "Bash":
            return None
        command = self.input.get("command")
        return command if isinstance(command, str) else None

    @property
    def file_path(self) -> str | None:
        value = self.input.get("file_path")
        return value if isinstance(value, str) else None


@dataclass(slots=True)
class UnknownContent:
    type: str
    raw: dict[str, Any]


AssistantContent = Union[TextContent, ToolUse, UnknownContent]


@dataclass(slots=True)
class ToolResult:
    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass(slots=True)
class UserEvent:
    content: Any
    type: str = "user"

    @property
    def is_tool_result(self) -> bool:
        if not isinstance(self.content, list) or not self.content:
            return False
        first = self.content[0]
        return isinstance(first, dict) and first.get("type") == "tool_result"

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return "\n".join(
                str(item.get("content") or "") if isinstance(item, dict) else ""
                for item in self.content
            )
        return ""

    @property
    def tool_results(self) -> list[ToolResult]:
        if not self.is_tool_result:
            return []
        results = []
        for item in self.content:
            if not isinstance(item, dict):
                continue
            content = item.get("content")
            results.append(
                ToolResult(
                    tool_use_id=str(item.get("tool_use_id") or ""),
                    content=content if isinstance(content, str) else "",
                    is_error=bool(item.get("is_error", False)),
                )
            )
        return results


@dataclass(slots=True)
class AssistantEvent:
    content: list[AssistantContent]
    model: str | None = None
    type: str = "assistant"

    @property
    def tool_uses(self) -> list[ToolUse]:
        return [block for block in self.content if isinstance(block, ToolUse)]

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextContent))


@dataclass(slots=True)
class SystemEvent:
    subtype: str
    session_id: str | None
    model: str | None
    raw: dict[str, Any]
    type: str = "system"


@dataclass(slots=True)
class ResultEvent:
    subtype: str
    is_error: bool
    duration_ms: int
    num_turns: int
    result: str | None
    total_cost_usd: float | None
    raw: dict[str, Any]
    type: str = "result"


@dataclass(slots=True)
class UnknownEvent:
    type: str
    raw: dict[str, Any]


TranscriptEvent = Union[UserEvent, AssistantEvent, SystemEvent, ResultEvent, UnknownEvent]


def _decode_content(block: dict[str, Any]) -> AssistantContent:
    kind = block.get("type") or ""
    if kind == "text":
        return TextContent(text=str(block.get("text") or ""))
    if kind == "tool_use":
        payload = block.get("input")
        return ToolUse(
            id=str(block.get("id") or ""),
            name=str(block.get("name") or ""),
            input=payload if isinstance(payload, dict) else {},
        )
    return UnknownContent(type=str(kind), raw=block)


def decode_event(document: dict[str, Any]) -> TranscriptEvent:
    """Decode one transcript object using its ``type`` discriminator."""

    kind = document.get("type") or ""
    if kind == "user":
        message = document.get("message") or {}
        return UserEvent(content=message.get("content") if isinstance(message, dict) else None)
    if kind == "assistant":
        message = document.get("message") or {}
        blocks = message.get("content") if isinstance(message, dict) else None
        return AssistantEvent(
            content=[_decode_content(block) for block in blocks or [] if isinstance(block, dict)],
            model=message.get("model") if isinstance(message, dict) else None,
        )
    if kind == "system":
        return SystemEvent(
            subtype=str(document.get("subtype") or ""),
            session_id=document.get("session_id"),
            model=document.get("model"),
            raw=document,
        )
    if kind == "result":
        cost = document.get("total_cost_usd")
        return ResultEvent(
            subtype=str(document.get("subtype") or ""),
            is_error=bool(document.get("is_error", False)),
            duration_ms=int(document.get("duration_ms") or 0),
            num_turns=int(document.get("num_turns") or 0),
            result=document.get("result"),
            total_cost_usd=float(cost) if isinstance(cost, (int, float)) else None,
            raw=document,
        )
    return UnknownEvent(type=str(kind), raw=document)


def parse_transcript(content: str) -> list[TranscriptEvent]:
    """Decode newline-delimited JSON, skipping blank and malformed lines."""

    events: list[TranscriptEvent] = []
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            document = json.loads(line)
            if not isinstance(document, dict):
                continue
            events.append(decode_event(document))
        except (ValueError, TypeError):
            continue
    return events


_DIRECTIVE_RE = re.compile(r"\b(NEVER|ALWAYS|DO NOT|DONT|MUST NOT|MUST)\b", re.IGNORECASE)
_ERROR_MARKERS = ("Error", "error:", "failed")
REPEAT_THRESHOLD = 3
MAX_ERRORS = 5
MAX_PROMPTS = 10


def _normalize_command(command: str) -> str:
    return command.split("|", 1)[0].split(">", 1)[0].strip()


@dataclass(slots=True)
class TranscriptAnalysis:
    """Usage patterns derived from a decoded transcript."""

    tool_usage: dict[str, int] = field(default_factory=dict)
    bash_commands: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    user_prompts: list[str] = field(default_factory=list)
    user_directives: list[str] = field(default_factory=list)
    total_events: int = 0

    @classmethod
    def from_events(cls, events: list[TranscriptEvent]) -> "TranscriptAnalysis":
        analysis = cls(total_events=len(events))
        for event in events:
            if isinstance(event, AssistantEvent):
                for tool_use in event.tool_uses:
                    analysis.tool_usage[tool_use.name] = analysis.tool_usage.get(tool_use.name, 0) + 1
                    command = tool_use.bash_command
                    if command is not None:
                        normalized = _normalize_command(command)
                        analysis.bash_commands[normalized] = analysis.bash_commands.get(normalized, 0) + 1
            elif isinstance(event, UserEvent):
                if event.is_tool_result:
                    for result in event.tool_results:
                        if result.is_error or "Error" in result.content or "error:" in result.content:
                            analysis._add_error(result.content)
                    continue
                text = event.text
                if len(text) > 5 and len(analysis.user_prompts) < MAX_PROMPTS:
                    analysis.user_prompts.append(text[:100])
                if _DIRECTIVE_RE.search(text):
                    analysis.user_directives.append(text)
                if any(marker in text for marker in _ERROR_MARKERS):
                    analysis._add_error(text)
        return analysis

    @classmethod
    def from_content(cls, content: str) -> "TranscriptAnalysis":
        return cls.from_events(parse_transcript(content))

    def _add_error(self, text: str) -> None:
        if len(self.errors) < MAX_ERRORS:
            self.errors.append(text[:150])

    @property
    def repeated_commands(self) -> dict[str, int]:
        return {
            command: count
            for command, count in self.bash_commands.items()
            if count >= REPEAT_THRESHOLD
        }

    def patterns(self) -> list[str]:
        """Summarize detected patterns for the analysis history."""

        found = [
            f"repeated_command: {command} ({count}x)"
            for command, count in self.repeated_commands.items()
        ]
        found.extend(f"user_directive: {directive[:100]}" for directive in self.user_directives)
        if self.errors:
            found.append(f"errors: {len(self.errors)}")
        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_usage": dict(self.tool_usage),
            "bash_commands": dict(self.bash_commands),
            "recent_errors": list(self.errors),
            "user_prompts": list(self.user_prompts),
            "user_directives": list(self.user_directives),
            "total_events": self.total_events,
        }


__all__ = [
    "AssistantContent",
    "AssistantEvent",
    "ResultEvent",
    "SystemEvent",
    "TextContent",
    "ToolResult",
    "ToolUse",
    "TranscriptAnalysis",
    "TranscriptEvent",
    "UnknownContent",
    "UnknownEvent",
    "UserEvent",
    "decode_event",
    "parse_transcript",
]
