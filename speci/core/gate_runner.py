"""Gate runner: validation commands executed after implementation phases.

Gate commands are shell strings from the project's own configuration and run
through the platform shell, so they are trusted input. Failures are returned
as results, never raised: a failing gate is the signal the fix agent works
from.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Sequence

from speci.utils import excerpt_lines

logger = logging.getLogger(__name__)

GateStrategy = Literal["sequential", "parallel"]

DEFAULT_TIMEOUT_MS = 5 * 60 * 1000
TIMEOUT_EXIT_CODE = 124
SPAWN_ERROR_EXIT_CODE = 127
KILL_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class GateCommandResult:
    """Outcome of one gate command."""

    command: str
    succeeded: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def failure_message(self) -> str:
        """Text handed to the fix agent when this command failed."""
        return (
            self.stderr.strip()
            or self.stdout.strip()
            or f"Command failed with exit code {self.exit_code}"
        )


@dataclass(frozen=True)
class GateResult:
    """Aggregate outcome of one gate run, in configured command order."""

    succeeded: bool
    command_results: tuple[GateCommandResult, ...] = field(default_factory=tuple)
    first_failure_message: str | None = None
    total_duration_ms: int = 0

    @classmethod
    def from_results(
        cls,
        results: Sequence[GateCommandResult],
        total_duration_ms: int,
    ) -> GateResult:
        first_failure = next((r for r in results if not r.succeeded), None)
        return cls(
            succeeded=first_failure is None,
            command_results=tuple(results),
            first_failure_message=first_failure.failure_message if first_failure else None,
            total_duration_ms=total_duration_ms,
        )

    @property
    def failed_commands(self) -> list[GateCommandResult]:
        return [r for r in self.command_results if not r.succeeded]

    @property
    def first_failure(self) -> GateCommandResult | None:
        failed = self.failed_commands
        return failed[0] if failed else None

    def to_summary(self) -> str:
        """Human-readable summary, one line per command."""
        lines = [f"GATE {'PASSED' if self.succeeded else 'FAILED'} ({self.total_duration_ms}ms)"]
        for r in self.command_results:
            status = "PASS" if r.succeeded else f"FAIL (exit {r.exit_code})"
            lines.append(f"  - {r.command}: {status}")
        return "\n".join(lines)


def can_retry(attempts: int, max_fix_attempts: int) -> bool:
    """Whether another fix attempt is allowed."""
    return attempts < max_fix_attempts


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while chunk := await stream.read(65536):
        sink.extend(chunk)


class GateRunner:
    """
    Runs gate commands sequentially or in parallel.

    Each command inherits the working directory and environment of the
    orchestration process unless ``cwd``/``env`` are given.
    """

    def __init__(
        self,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.cwd = Path(cwd) if cwd else None
        self.env = env

    async def run(
        self,
        commands: Sequence[str],
        strategy: GateStrategy = "sequential",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> GateResult:
        """
        Run all gate commands and aggregate the verdict.

        Args:
            commands: Shell commands, in priority order.
            strategy: "sequential" runs one at a time and logs as each finishes;
                "parallel" runs all at once and logs after all finish.
            timeout_ms: Per-command timeout.

        Returns:
            GateResult whose first failure is the lowest-index failing command.
        """
        if not commands:
            logger.debug("No gate commands configured, skipping gate")
            return GateResult(succeeded=True)

        logger.info("Running gate checks (%d commands, %s)...", len(commands), strategy)
        start = time.monotonic()

        if strategy == "parallel":
            results = await self._run_parallel(commands, timeout_ms)
        else:
            results = await self._run_sequential(commands, timeout_ms)

        gate_result = GateResult.from_results(results, _elapsed_ms(start))

        if gate_result.succeeded:
            logger.info(
                "Gate passed! All %d checks completed in %dms",
                len(commands),
                gate_result.total_duration_ms,
            )
        else:
            failed = gate_result.first_failure
            logger.error("Gate failed: %s", failed.command if failed else "unknown")

        return gate_result

    async def _run_sequential(
        self,
        commands: Sequence[str],
        timeout_ms: int,
    ) -> list[GateCommandResult]:
        results: list[GateCommandResult] = []
        for command in commands:
            logger.info("  > %s", command)
            result = await self.execute(command, timeout_ms)
            results.append(result)
            self._log_result(result)
        return results

    async def _run_parallel(
        self,
        commands: Sequence[str],
        timeout_ms: int,
    ) -> list[GateCommandResult]:
        settled = await asyncio.gather(
            *(self.execute(command, timeout_ms) for command in commands),
            return_exceptions=True,
        )

        results: list[GateCommandResult] = []
        for command, outcome in zip(commands, settled):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                outcome = GateCommandResult(
                    command=command,
                    succeeded=False,
                    exit_code=SPAWN_ERROR_EXIT_CODE,
                    stderr=str(outcome) or type(outcome).__name__,
                )
            results.append(outcome)

        # Logged after all complete so output does not interleave
        for result in results:
            logger.info("  > %s", result.command)
            self._log_result(result)
        return results

    async def execute(self, command: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> GateCommandResult:
        """Run one shell command, capturing output. Never raises for command failures."""
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self.env if self.env is not None else os.environ.copy(),
            )
        except (OSError, ValueError) as e:
            # ValueError: the command string contains a NUL byte
            return GateCommandResult(
                command=command,
                succeeded=False,
                exit_code=SPAWN_ERROR_EXIT_CODE,
                stderr=str(e),
                duration_ms=_elapsed_ms(start),
            )

        # Read incrementally so output produced before a timeout is kept
        stdout, stderr = bytearray(), bytearray()
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(process.stdout, stdout),
                    _drain(process.stderr, stderr),
                    process.wait(),
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            await self._terminate(process)
            logger.warning("Gate command timed out after %dms: %s", timeout_ms, command)
            return GateCommandResult(
                command=command,
                succeeded=False,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=f"Command timed out after {timeout_ms}ms",
                duration_ms=_elapsed_ms(start),
            )
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        exit_code = process.returncode if process.returncode is not None else 1
        return GateCommandResult(
            command=command,
            succeeded=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=_elapsed_ms(start),
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL if the child ignores it."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def _log_result(self, result: GateCommandResult) -> None:
        if result.succeeded:
            logger.info("    + Passed (%dms)", result.duration_ms)
            return
        logger.error("    x Failed (exit code %d)", result.exit_code)
        for line in excerpt_lines(result.stderr):
            logger.error("      %s", line)
