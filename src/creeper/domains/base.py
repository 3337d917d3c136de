"""Profile-driven domain analyzer."""

from __future__ import annotations

from .models import AnalysisResult, CycleContext, DomainProfile

MAX_LISTED_FILES = 20
MAX_LISTED_PROMPTS = 5


def _changed_files_section(files: tuple[str, ...]) -> str | None:
    if not files:
        return None
    lines = [f"- {path}" for path in files[:MAX_LISTED_FILES]]
    if len(files) > MAX_LISTED_FILES:
        lines.append(f"- ... and {len(files) - MAX_LISTED_FILES} more")
    return "## Files Changed Since Last Analysis:\n" + "\n".join(lines)


def _transcript_section(context: CycleContext) -> str | None:
    analysis = context.analysis
    if analysis is None:
        return None

    parts = ["## Session Patterns from Transcript:"]
    if analysis.tool_usage:
        usage = ", ".join(f"{name}({count})" for name, count in analysis.tool_usage.items())
        parts.append(f"Tool usage: {usage}")

    repeated = analysis.repeated_commands
    if repeated:
        parts.append(
            "\n## REPEATED BASH COMMANDS (Automation Opportunity):\n"
            "These commands were run 3+ times and should be considered for automation:\n"
            + "\n".join(f"- `{command}` ({count} times)" for command, count in repeated.items())
        )

    if analysis.user_directives:
        parts.append(
            "\n## USER DIRECTIVES (HIGH PRIORITY):\n"
            "The user expressed these strong preferences:\n"
            + "\n".join(f'- "{directive}"' for directive in analysis.user_directives)
        )

    if analysis.errors:
        parts.append(
            "\nRecent errors encountered:\n" + "\n".join(f"- {error}" for error in analysis.errors)
        )

    if analysis.user_prompts:
        parts.append(
            "\nUser prompt themes:\n"
            + "\n".join(f"- {prompt}..." for prompt in analysis.user_prompts[:MAX_LISTED_PROMPTS])
        )
    return "\n".join(parts)


class Domain:
    """A pluggable analyzer that turns a cycle context into agent instructions.

    The default implementation renders everything from its ``DomainProfile``;
    subclasses may override ``should_activate`` or ``analyze``.
    """

    def __init__(self, profile: DomainProfile) -> None:
        self.profile = profile

    @property
    def id(self) -> str:
        return self.profile.id

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def description(self) -> str:
        return self.profile.description

    def should_activate(self, context: CycleContext) -> bool:
        activation = self.profile.activation
        if activation == "transcript":
            return context.analysis is not None
        if activation == "changes":
            return bool(context.changed_files)
        return True

    def build_user_prompt(self, context: CycleContext) -> str:
        sections = [
            f"CREEPER ANALYSIS REQUEST\n========================\nDomain: {self.name}",
            _changed_files_section(context.changed_files),
            f"## Recent Commits:\n{context.git_log}" if context.git_log else None,
            f"## Recent Changes Summary:\n{context.git_diff_stat}" if context.git_diff_stat else None,
            _transcript_section(context),
        ]
        focus = "\n".join(f"- {item}" for item in self.profile.focus)
        closing = "---\n" + (focus or "Analyze this context and make improvements as needed.")
        sections.append(closing)
        return "\n\n".join(section for section in sections if section)

    def analyze(self, context: CycleContext) -> AnalysisResult:
        return AnalysisResult(
            user_prompt=self.build_user_prompt(context),
            system_prompt_append=self.profile.system_prompt.strip(),
            allowed_tools=list(self.profile.allowed_tools),
            recommended_model=self.profile.recommended_model,
        )


__all__ = ["Domain"]
