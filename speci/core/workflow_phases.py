"""Agent phases, loop states and run outcome."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

AGENT_FILENAME_PREFIX = "speci-"


class AgentPhase(str, Enum):
    """Agent roles the orchestrator dispatches, one agent file each."""

    PLAN = "plan"
    TASK = "task"
    REFACTOR = "refactor"
    IMPL = "impl"
    REVIEW = "review"
    FIX = "fix"
    TIDY = "tidy"

    @property
    def agent_name(self) -> str:
        """Agent definition name passed to the agent CLI (``speci-<phase>``)."""
        return f"{AGENT_FILENAME_PREFIX}{self.value}"

    @property
    def runs_gate(self) -> bool:
        """Implementation-type phases are validated by the gate afterwards."""
        return self in (AgentPhase.IMPL, AgentPhase.FIX)


class LoopState(str, Enum):
    """Project state read from the progress file."""

    WORK_LEFT = "WORK_LEFT"
    IN_REVIEW = "IN_REVIEW"
    BLOCKED = "BLOCKED"
    DONE = "DONE"
    NO_PROGRESS = "NO_PROGRESS"


# Agent dispatched for each actionable state
STATE_PHASES: dict[LoopState, AgentPhase] = {
    LoopState.WORK_LEFT: AgentPhase.IMPL,
    LoopState.IN_REVIEW: AgentPhase.REVIEW,
    LoopState.BLOCKED: AgentPhase.TIDY,
}


def describe_action(state: LoopState) -> str:
    """Human-readable action the loop takes for ``state``."""
    return {
        LoopState.WORK_LEFT: "Run implementation agent",
        LoopState.IN_REVIEW: "Run review agent",
        LoopState.BLOCKED: "Run tidy agent",
        LoopState.DONE: "All tasks complete (no action)",
        LoopState.NO_PROGRESS: "Initialize project (run `speci init`)",
    }[state]


@dataclass
class RunOutcome:
    """Summary of a finished run loop."""

    completed: bool
    iterations: int
    final_state: LoopState | None = None
    phases_run: list[str] = field(default_factory=list)
