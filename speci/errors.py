"""Exception hierarchy for speci.

Only conditions the caller has to act on are exceptions. Expected domain
outcomes (a failing gate command, a non-zero agent exit) are returned as
values by the gate runner and the agent invoker.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from speci.agents.base import AgentFailure
    from speci.core.gate_runner import GateResult


class SpeciError(Exception):
    """Base class for all speci errors."""

    code = "ERR-GEN-01"
    exit_code = 1


class ConfigError(SpeciError):
    """Configuration file is missing required structure or fails validation."""

    code = "ERR-INP-03"


class LockHeldError(SpeciError):
    """Another live orchestration run holds the project lock.

    ``pid`` is None when the lock file exists but cannot be parsed: a corrupt
    lock is still treated as held.
    """

    code = "ERR-STA-01"

    def __init__(
        self,
        pid: int | None,
        elapsed: str | None,
        command: str | None = None,
    ) -> None:
        self.pid = pid
        self.elapsed = elapsed
        self.command = command
        holder = f"PID: {pid}" if pid is not None else "PID: unknown"
        since = f", started: {elapsed} ago" if elapsed else ""
        super().__init__(
            f"Another speci instance is running ({holder}{since}). "
            "Use --force to override or wait for it to complete."
        )


class ProgressMissingError(SpeciError):
    """The progress file the run loop dispatches on does not exist."""

    code = "ERR-PRE-06"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f"No progress file found at {path}. Run `speci init` to initialize."
        )


class PhaseError(SpeciError):
    """An orchestration phase failed; names the phase."""

    code = "ERR-EXE-01"

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        super().__init__(message)


class AgentPhaseError(PhaseError):
    """The agent invocation for a phase ended in a failure result."""

    code = "ERR-EXE-02"

    def __init__(self, phase: str, failure: AgentFailure) -> None:
        self.failure = failure
        super().__init__(
            phase,
            f"{phase} agent failed (exit code {failure.exit_code}, "
            f"{failure.attempts} attempt(s)): {failure.error_message}",
        )


class GateExhaustedError(PhaseError):
    """Gate still failing after every allowed fix attempt."""

    code = "ERR-EXE-03"

    def __init__(self, phase: str, attempts: int, gate_result: GateResult) -> None:
        self.attempts = attempts
        self.gate_result = gate_result
        super().__init__(
            phase,
            f"Gates still failing after {attempts} fix attempt(s) in {phase} phase.",
        )


class CleanError(SpeciError):
    """Task or progress files could not be deleted."""

    code = "ERR-EXE-10"

    def __init__(self, message: str, paths: list[str] | None = None) -> None:
        self.paths = paths or []
        super().__init__(message)


class CleanRefusedError(CleanError):
    """A lock file exists, so a run may be using the files being cleaned."""

    code = "ERR-STA-01"
