"""Orchestration loop: dispatch agents from progress state and enforce the gate.

A session holds the project lock from start to finish. The loop reads the
progress file at the top of every iteration and dispatches:

    WORK_LEFT  -> impl agent, gate, fix agent + gate until green
    IN_REVIEW  -> review agent
    BLOCKED    -> tidy agent
    DONE       -> stop

Agent failures and gate exhaustion end the session with an exception; the
``finally`` path always stops tracked children and releases the lock.
"""

from __future__ import annotations

import logging

from speci.agents.base import AgentSuccess
from speci.core.context import RunContext
from speci.core.gate_runner import GateResult, can_retry
from speci.core.lock import LockMetadata, LockRecord
from speci.core.workflow_phases import STATE_PHASES, AgentPhase, LoopState, RunOutcome
from speci.errors import AgentPhaseError, GateExhaustedError, LockHeldError, ProgressMissingError
from speci.utils import truncate_with_marker

logger = logging.getLogger(__name__)

# Per-command failure output included in the fix agent prompt
MAX_FIX_CONTEXT_CHARS = 4000


class Orchestrator:
    """
    Runs speci sessions against one project.

    A ``RunContext`` is single-use: its cleanup registry runs once, at the end
    of the first session.
    """

    def __init__(self, context: RunContext) -> None:
        self.context = context
        self.settings = context.settings

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def run(self, max_iterations: int | None = None, force: bool = False) -> RunOutcome:
        """
        Run the implementation loop until all tasks are done or the limit is hit.

        Args:
            max_iterations: Override for ``loop.max_iterations``.
            force: Override an existing lock.

        Raises:
            LockHeldError: Another run holds the lock and ``force`` is False.
            ProgressMissingError: The progress file does not exist.
            AgentPhaseError: An agent failed.
            GateExhaustedError: The gate kept failing after all fix attempts.
        """
        self._start_session("run", force, LockMetadata(iteration=0, state="run:starting"))
        try:
            return await self._run_loop(max_iterations)
        finally:
            await self.context.cleanup.run()

    async def run_phase(
        self,
        phase: AgentPhase,
        prompt: str | None = None,
        inherit: bool = True,
        force: bool = False,
    ) -> AgentSuccess:
        """Run a single agent phase (plan, task, refactor) under the lock."""
        self._start_session(phase.value, force, LockMetadata(state=phase.value), with_log=False)
        try:
            return await self._invoke_phase(phase, prompt, inherit=inherit)
        finally:
            await self.context.cleanup.run()

    async def pipeline(
        self,
        prompt: str,
        force: bool = False,
        max_iterations: int | None = None,
    ) -> RunOutcome:
        """Plan, generate tasks, then run the loop, all under one lock."""
        self._start_session("yolo", force, LockMetadata(state="yolo:pipeline"))
        try:
            logger.info("Phase 1/3: planning")
            await self._invoke_phase(AgentPhase.PLAN, prompt)
            logger.info("Phase 2/3: task generation")
            await self._invoke_phase(AgentPhase.TASK)
            logger.info("Phase 3/3: implementation loop")
            outcome = await self._run_loop(max_iterations)
            outcome.phases_run[:0] = [AgentPhase.PLAN.value, AgentPhase.TASK.value]
            return outcome
        finally:
            await self.context.cleanup.run()

    def _start_session(
        self,
        command: str,
        force: bool,
        metadata: LockMetadata,
        with_log: bool = True,
    ) -> LockRecord:
        ctx = self.context
        if ctx.cleanup.has_run:
            raise RuntimeError("RunContext has already been shut down")

        record = self._acquire(command, force, metadata)

        # LIFO: children are stopped first, the lock is released last
        ctx.cleanup.register(ctx.lock.release)
        if with_log:
            ctx.cleanup.register(ctx.run_log.close)
            ctx.run_log.open()
        ctx.cleanup.register(ctx.children.terminate_all)
        return record

    def _acquire(self, command: str, force: bool, metadata: LockMetadata) -> LockRecord:
        lock = self.context.lock
        try:
            return lock.acquire(command=command, metadata=metadata)
        except LockHeldError:
            if not force:
                raise
            lock.force_release()
            return lock.acquire(command=command, metadata=metadata)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_loop(self, max_iterations: int | None) -> RunOutcome:
        ctx = self.context
        limit = self.settings.loop.max_iterations if max_iterations is None else max_iterations
        outcome = RunOutcome(completed=False, iterations=0)

        for iteration in range(1, limit + 1):
            state = ctx.progress.get_state()
            outcome.final_state = state
            ctx.run_log.iteration(iteration, "START")
            ctx.run_log.state(state.value)

            if state is LoopState.DONE:
                logger.info("All tasks complete")
                ctx.run_log.iteration(iteration, "END")
                outcome.completed = True
                return outcome
            if state is LoopState.NO_PROGRESS:
                raise ProgressMissingError(str(ctx.progress.path))

            logger.info("Iteration %d/%d: %s", iteration, limit, state.value)
            current = ctx.progress.get_current_task()
            if current:
                logger.info("Current task: %s - %s", current.id, current.title)

            phase = STATE_PHASES[state]
            if phase.runs_gate:
                await self._implement(outcome)
            else:
                await self._invoke_phase(phase)
                outcome.phases_run.append(phase.value)

            outcome.iterations = iteration
            ctx.run_log.iteration(iteration, "END")

        logger.warning("Reached max iterations (%d) without completing all tasks", limit)
        return outcome

    async def _implement(self, outcome: RunOutcome) -> None:
        """Implementation agent, then gate; fix agent until the gate passes."""
        max_fix_attempts = self.settings.gate.max_fix_attempts

        await self._invoke_phase(AgentPhase.IMPL)
        outcome.phases_run.append(AgentPhase.IMPL.value)

        result = await self._run_gate()
        attempts = 0
        while not result.succeeded:
            if not can_retry(attempts, max_fix_attempts):
                logger.error(
                    "Gates still failing after %d fix attempt(s)", attempts
                )
                raise GateExhaustedError(AgentPhase.IMPL.value, attempts, result)

            attempts += 1
            logger.warning(
                "Gate failed. Running fix agent (attempt %d/%d)...",
                attempts,
                max_fix_attempts,
            )
            await self._invoke_phase(AgentPhase.FIX, build_fix_prompt(result), attempt=attempts)
            outcome.phases_run.append(AgentPhase.FIX.value)
            result = await self._run_gate()

        if attempts:
            logger.info("Gates passed after %d fix attempt(s)", attempts)
        else:
            logger.info("All gates passed")

    async def _run_gate(self) -> GateResult:
        gate = self.settings.gate
        result = await self.context.gate.run(gate.commands, gate.strategy, gate.timeout_ms)
        self.context.run_log.gate(result)
        return result

    async def _invoke_phase(
        self,
        phase: AgentPhase,
        prompt: str | None = None,
        inherit: bool = True,
        attempt: int | None = None,
    ) -> AgentSuccess:
        ctx = self.context
        argv = ctx.adapter.build_args(phase, prompt)
        logger.info("Running %s agent: %s", phase.value, ctx.adapter.format_command(argv))

        ctx.run_log.agent(phase.value, "START", attempt)
        result = await ctx.invoker.invoke(argv, self.settings.retry, inherit=inherit)
        if not result.succeeded:
            ctx.run_log.agent(phase.value, "FAILED", attempt)
            raise AgentPhaseError(phase.value, result)

        ctx.run_log.agent(phase.value, "SUCCESS", attempt)
        return result


def build_fix_prompt(result: GateResult) -> str:
    """Prompt for the fix agent listing each failing gate command's output."""
    lines = ["Gate checks failed. Fix the following errors:"]
    for r in result.failed_commands:
        lines.append("")
        lines.append(f"$ {r.command} (exit {r.exit_code})")
        lines.append(truncate_with_marker(r.failure_message, MAX_FIX_CONTEXT_CHARS))
    return "\n".join(lines)
