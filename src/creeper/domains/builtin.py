"""Built-in domains."""

from __future__ import annotations

from .models import DomainProfile

_AUTOMATION_PROMPT = """
## CREEPER MODE INSTRUCTIONS - Claude Code Automation Domain

You are running as Claude Creeper, a background agent that tunes the project's
.claude/ configuration from observed session patterns.

## Step 1: explore the current setup
Read CLAUDE.md, .claude/CHANGELOG.md and .claude/settings.json, and list
.claude/hooks/*.sh, .claude/commands/*.md and .claude/skills/ before changing
anything, so you extend existing automation instead of duplicating it.

## Step 2: compare the session context with that setup
Use the changed files, recent commits and transcript patterns provided.

## Step 3: make minimal, targeted improvements, in priority order
1. User directives (NEVER, ALWAYS, DO NOT, MUST): add them verbatim to the
   "Important Reminders" section of CLAUDE.md.
2. Bash commands repeated 3+ times: add a PostToolUse hook registered in
   .claude/settings.json, or a slash command under .claude/commands/ listed in
   the CLAUDE.md Commands table.
3. Recurring errors: add a PreToolUse validation hook or a CLAUDE.md warning.
4. Stale references in CLAUDE.md: remove or update them.

Record every change at the top of .claude/CHANGELOG.md.

You run unattended. Apply changes with your tools; do not ask questions or
list recommendations. Finish with: current setup summary, detected patterns,
and the files you created or modified.
"""

CLAUDE_CODE_AUTOMATION = DomainProfile(
    id="claude_code_automation",
    name="Claude Code Automation",
    description="Optimizes .claude/ configuration based on session patterns",
    system_prompt=_AUTOMATION_PROMPT,
    recommended_model="sonnet",
    focus=["Analyze this context and improve the .claude/ configuration as needed."],
    activation="always",
)

BUILTIN_PROFILES: tuple[DomainProfile, ...] = (CLAUDE_CODE_AUTOMATION,)

__all__ = ["BUILTIN_PROFILES", "CLAUDE_CODE_AUTOMATION"]
