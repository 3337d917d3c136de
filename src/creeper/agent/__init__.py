"""External coding agent invocation."""

from .runner import (
    AgentExecutionResult,
    AgentInvocation,
    AgentNotFoundError,
    AgentRunner,
    AgentRunnerError,
    AgentTimeoutError,
    FakeAgentRunner,
)

__all__ = [
    "AgentExecutionResult",
    "AgentInvocation",
    "AgentNotFoundError",
    "AgentRunner",
    "AgentRunnerError",
    "AgentTimeoutError",
    "FakeAgentRunner",
]
