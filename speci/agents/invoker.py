"""Resilient agent invoker.

Runs the agent binary for one phase and folds every process-level outcome
into an ``AgentSuccess`` or ``AgentFailure``. Attempts move through

    Attempting(n) -> Succeeded | FailedFatal | FailedExhausted

where a retryable exit code with attempts left waits
``min(max_delay_ms, base_delay_ms * 2**n)`` and goes to Attempting(n + 1).
A missing binary is fatal on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from speci.agents.base import (
    AGENT_NOT_FOUND_MESSAGE,
    AgentFailure,
    AgentInvocationResult,
    AgentSuccess,
)
from speci.core.cleanup import ChildProcessRegistry
from speci.core.retry_utils import RetryPolicy, create_async_retrying

logger = logging.getLogger(__name__)

SPAWN_ERROR_EXIT_CODE = 127


@dataclass(frozen=True)
class _Attempt:
    """Raw outcome of a single spawn."""

    exit_code: int
    stderr: str = ""
    spawn_error: bool = False


class AgentInvoker:
    """
    Spawns the agent executable with bounded retries.

    Args:
        executable: Agent binary name or path.
        cwd: Working directory for the agent (defaults to the current one).
        children: Registry that tracks the in-flight process for cleanup.
        sleep: Awaitable sleep used for backoff, in seconds.
    """

    def __init__(
        self,
        executable: str = "copilot",
        cwd: Path | str | None = None,
        children: ChildProcessRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.executable = executable
        self.cwd = Path(cwd) if cwd else None
        self.children = children if children is not None else ChildProcessRegistry()
        self._sleep = sleep
        self.attempt_count = 0

    async def invoke(
        self,
        argv: Sequence[str],
        policy: RetryPolicy | None = None,
        *,
        inherit: bool = True,
    ) -> AgentInvocationResult:
        """
        Run the agent until it succeeds, fails fatally, or retries run out.

        Args:
            argv: Arguments passed after the executable.
            policy: Retry policy (defaults to ``RetryPolicy()``).
            inherit: Forward stdio to the terminal; when False, capture it so
                stderr can become the failure message.

        Returns:
            AgentSuccess on exit code 0, otherwise AgentFailure.
        """
        policy = policy or RetryPolicy()
        self.attempt_count = 0

        def should_retry(attempt: _Attempt) -> bool:
            return (
                not attempt.spawn_error
                and attempt.exit_code != 0
                and policy.is_retryable(attempt.exit_code)
            )

        retrying = create_async_retrying(policy, should_retry, sleep=self._sleep)
        last: _Attempt = await retrying(self._spawn, list(argv), inherit)
        return self._to_result(last, policy)

    async def _spawn(self, argv: list[str], inherit: bool) -> _Attempt:
        self.attempt_count += 1
        logger.debug(
            "Spawning agent (attempt %d): %s %s",
            self.attempt_count,
            self.executable,
            " ".join(argv),
        )

        stream = None if inherit else asyncio.subprocess.PIPE
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *argv,
                stdout=stream,
                stderr=stream,
                cwd=self.cwd,
            )
        except FileNotFoundError as e:
            logger.error("Could not start %s: %s", self.executable, e)
            return _Attempt(
                exit_code=SPAWN_ERROR_EXIT_CODE,
                stderr=AGENT_NOT_FOUND_MESSAGE,
                spawn_error=True,
            )
        except OSError as e:
            logger.error("Could not start %s: %s", self.executable, e)
            return _Attempt(
                exit_code=SPAWN_ERROR_EXIT_CODE,
                stderr=f"Could not start agent binary: {e}",
                spawn_error=True,
            )

        # Stays tracked if cancelled mid-run so cleanup can terminate it
        self.children.track(process)
        _, stderr = await process.communicate()
        self.children.untrack(process)

        exit_code = process.returncode if process.returncode is not None else 1
        stderr_text = stderr.decode("utf-8", errors="replace") if stderr else ""
        if exit_code != 0:
            logger.debug("Agent exited with code %d", exit_code)
        return _Attempt(exit_code=exit_code, stderr=stderr_text)

    def _to_result(self, attempt: _Attempt, policy: RetryPolicy) -> AgentInvocationResult:
        attempts = self.attempt_count

        if attempt.spawn_error:
            return AgentFailure(
                exit_code=SPAWN_ERROR_EXIT_CODE,
                error_message=attempt.stderr,
                attempts=attempts,
            )

        if attempt.exit_code == 0:
            return AgentSuccess(attempts=attempts)

        message = attempt.stderr.strip() or f"Agent exited with code {attempt.exit_code}"
        if policy.is_retryable(attempt.exit_code):
            message = f"{message} (failed after {attempts} attempts)"
            logger.error(
                "Agent still failing with exit code %d after %d attempts",
                attempt.exit_code,
                attempts,
            )
        return AgentFailure(exit_code=attempt.exit_code, error_message=message, attempts=attempts)
