"""Agent CLI integration: argv building, result types and the resilient invoker."""

from speci.agents.base import (
    AGENT_NOT_FOUND_MESSAGE,
    AgentFailure,
    AgentInvocationResult,
    AgentSuccess,
    find_npm_executable,
)
from speci.agents.copilot import CopilotAdapter
from speci.agents.invoker import AgentInvoker

__all__ = [
    "AGENT_NOT_FOUND_MESSAGE",
    "AgentFailure",
    "AgentInvocationResult",
    "AgentInvoker",
    "AgentSuccess",
    "CopilotAdapter",
    "find_npm_executable",
]
