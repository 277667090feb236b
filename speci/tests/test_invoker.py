"""Tests for the resilient agent invoker, using real child processes."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from speci.agents.base import AGENT_NOT_FOUND_MESSAGE, AgentFailure, AgentSuccess
from speci.agents.invoker import AgentInvoker
from speci.core.retry_utils import RetryPolicy


class FakeSleep:
    """Records backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _script(code: str) -> list[str]:
    return ["-c", code]


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def invoker(fake_sleep: FakeSleep) -> AgentInvoker:
    return AgentInvoker(executable=sys.executable, sleep=fake_sleep)


class TestAgentInvoker:
    """Tests for AgentInvoker.invoke."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, invoker: AgentInvoker, fake_sleep: FakeSleep):
        """Test exit code 0 returns AgentSuccess without retrying."""
        result = await invoker.invoke(_script("pass"), inherit=False)

        assert isinstance(result, AgentSuccess)
        assert result.exit_code == 0
        assert result.attempts == 1
        assert fake_sleep.delays == []
        assert len(invoker.children) == 0

    @pytest.mark.asyncio
    async def test_exponential_backoff_until_exhausted(
        self,
        invoker: AgentInvoker,
        fake_sleep: FakeSleep,
    ):
        """Test a retryable code is retried with doubling delays, then reported."""
        policy = RetryPolicy(max_retries=4, base_delay_ms=1000, max_delay_ms=8000)

        result = await invoker.invoke(
            _script("import sys; sys.exit(52)"),
            policy,
            inherit=False,
        )

        assert isinstance(result, AgentFailure)
        assert result.exit_code == 52
        assert result.attempts == 5
        assert invoker.attempt_count == 5
        assert fake_sleep.delays == [1.0, 2.0, 4.0, 8.0]
        assert "(failed after 5 attempts)" in result.error_message

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, invoker: AgentInvoker, fake_sleep: FakeSleep):
        """Test delays never exceed max_delay_ms."""
        policy = RetryPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=2000)

        await invoker.invoke(_script("import sys; sys.exit(7)"), policy, inherit=False)

        assert fake_sleep.delays == [1.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_code_single_attempt(
        self,
        invoker: AgentInvoker,
        fake_sleep: FakeSleep,
    ):
        """Test an ordinary failure is not retried and stderr is the message."""
        result = await invoker.invoke(
            _script("import sys; sys.stderr.write('model refused\\n'); sys.exit(1)"),
            inherit=False,
        )

        assert isinstance(result, AgentFailure)
        assert result.exit_code == 1
        assert result.attempts == 1
        assert result.error_message == "model refused"
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_failure_without_stderr_gets_message(self, invoker: AgentInvoker):
        """Test a silent failure still carries a non-empty message."""
        result = await invoker.invoke(_script("import sys; sys.exit(3)"), inherit=False)

        assert isinstance(result, AgentFailure)
        assert result.error_message == "Agent exited with code 3"

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(
        self,
        invoker: AgentInvoker,
        fake_sleep: FakeSleep,
        temp_project_dir: Path,
    ):
        """Test a retryable failure followed by success returns AgentSuccess."""
        marker = temp_project_dir / "attempted"
        code = (
            "import os, sys\n"
            f"marker = {str(marker)!r}\n"
            "if not os.path.exists(marker):\n"
            "    open(marker, 'w').close()\n"
            "    sys.exit(124)\n"
        )

        result = await invoker.invoke(_script(code), inherit=False)

        assert isinstance(result, AgentSuccess)
        assert result.attempts == 2
        assert fake_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_missing_binary_is_fatal(self, fake_sleep: FakeSleep):
        """Test a binary that does not exist fails once with exit code 127."""
        invoker = AgentInvoker(executable="speci-no-such-agent-binary", sleep=fake_sleep)

        result = await invoker.invoke(["-p", "hello"])

        assert isinstance(result, AgentFailure)
        assert result.exit_code == 127
        assert result.error_message == AGENT_NOT_FOUND_MESSAGE
        assert result.attempts == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, fake_sleep: FakeSleep, temp_project_dir: Path):
        """Test the agent starts in the configured working directory."""
        invoker = AgentInvoker(executable=sys.executable, cwd=temp_project_dir, sleep=fake_sleep)

        result = await invoker.invoke(
            _script("open('touched', 'w').close()"),
            inherit=False,
        )

        assert result.succeeded is True
        assert (temp_project_dir / "touched").exists()


class TestResultTypes:
    """Tests for the closed result union."""

    def test_success_requires_zero(self):
        with pytest.raises(ValueError):
            AgentSuccess(exit_code=1)  # type: ignore[arg-type]

    def test_failure_rejects_zero(self):
        with pytest.raises(ValueError):
            AgentFailure(exit_code=0, error_message="nope")

    def test_failure_requires_message(self):
        with pytest.raises(ValueError):
            AgentFailure(exit_code=1, error_message="  ")
