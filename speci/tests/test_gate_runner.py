"""Tests for the gate runner."""

from __future__ import annotations

import pytest

from speci.core.gate_runner import (
    SPAWN_ERROR_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    GateCommandResult,
    GateResult,
    GateRunner,
    can_retry,
)

FAIL_FIRST = "import sys; sys.stderr.write('first failure\\n'); sys.exit(2)"
FAIL_SECOND = "import sys; sys.stderr.write('second failure\\n'); sys.exit(3)"
SLOW_FAIL = "import sys, time; time.sleep(0.5); sys.stderr.write('slow failure\\n'); sys.exit(2)"
FAST_FAIL = "import sys; sys.stderr.write('fast failure\\n'); sys.exit(3)"


class TestGateResult:
    """Tests for GateResult aggregation."""

    def test_first_failure_by_index(self):
        """Test the first failing command in list order provides the message."""
        result = GateResult.from_results(
            [
                GateCommandResult(command="lint", succeeded=True, exit_code=0),
                GateCommandResult(command="typecheck", succeeded=False, exit_code=2, stderr="type error"),
                GateCommandResult(command="test", succeeded=False, exit_code=1, stderr="test error"),
            ],
            total_duration_ms=10,
        )
        assert result.succeeded is False
        assert result.first_failure_message == "type error"
        assert [r.command for r in result.failed_commands] == ["typecheck", "test"]

    def test_failure_message_falls_back_to_stdout(self):
        """Test stdout, then a synthesized message, when stderr is empty."""
        with_stdout = GateCommandResult(command="a", succeeded=False, exit_code=1, stdout="out")
        silent = GateCommandResult(command="b", succeeded=False, exit_code=4)

        assert with_stdout.failure_message == "out"
        assert silent.failure_message == "Command failed with exit code 4"

    def test_summary_lists_each_command(self):
        """Test the summary has one PASS/FAIL line per command."""
        result = GateResult.from_results(
            [
                GateCommandResult(command="lint", succeeded=True, exit_code=0),
                GateCommandResult(command="test", succeeded=False, exit_code=1),
            ],
            total_duration_ms=5,
        )
        summary = result.to_summary()
        assert summary.startswith("GATE FAILED")
        assert "  - lint: PASS" in summary
        assert "  - test: FAIL (exit 1)" in summary


class TestCanRetry:
    """Tests for the fix attempt limit."""

    def test_can_retry(self):
        assert can_retry(0, 5) is True
        assert can_retry(4, 5) is True
        assert can_retry(5, 5) is False
        assert can_retry(0, 0) is False


class TestGateRunner:
    """Tests for running gate commands."""

    @pytest.mark.asyncio
    async def test_empty_command_list_passes(self):
        """Test no commands means an immediate pass with no results."""
        result = await GateRunner().run([])
        assert result.succeeded is True
        assert result.command_results == ()
        assert result.first_failure_message is None

    @pytest.mark.asyncio
    async def test_all_commands_pass(self, python_command):
        """Test a gate where every command exits 0."""
        commands = [python_command("print('lint ok')"), python_command("print('tests ok')")]
        result = await GateRunner().run(commands)

        assert result.succeeded is True
        assert [r.exit_code for r in result.command_results] == [0, 0]
        assert "lint ok" in result.command_results[0].stdout

    @pytest.mark.asyncio
    async def test_sequential_runs_all_and_reports_first_failure(self, python_command):
        """Test sequential mode runs every command and keeps list order."""
        commands = [
            python_command("print('ok')"),
            python_command(FAIL_FIRST),
            python_command(FAIL_SECOND),
        ]
        result = await GateRunner().run(commands, strategy="sequential")

        assert result.succeeded is False
        assert [r.exit_code for r in result.command_results] == [0, 2, 3]
        assert result.first_failure_message == "first failure"

    @pytest.mark.asyncio
    async def test_parallel_first_failure_is_by_index_not_completion(self, python_command):
        """Test parallel mode picks the lowest-index failure even if it finishes last."""
        commands = [python_command(SLOW_FAIL), python_command(FAST_FAIL)]
        result = await GateRunner().run(commands, strategy="parallel")

        assert result.succeeded is False
        assert [r.command for r in result.command_results] == commands
        assert result.first_failure_message == "slow failure"

    @pytest.mark.asyncio
    async def test_timeout_reports_exit_124(self, python_command):
        """Test a command exceeding its timeout is killed and reported."""
        result = await GateRunner().run(
            [python_command("import time; time.sleep(30)")],
            timeout_ms=500,
        )

        command_result = result.command_results[0]
        assert result.succeeded is False
        assert command_result.exit_code == TIMEOUT_EXIT_CODE
        assert command_result.stderr == "Command timed out after 500ms"
        assert command_result.duration_ms < 10_000

    @pytest.mark.asyncio
    async def test_timeout_keeps_partial_stdout(self, python_command):
        """Test output written before the timeout is reported."""
        result = await GateRunner().run(
            [python_command("import time; print('partial', flush=True); time.sleep(30)")],
            timeout_ms=2000,
        )

        command_result = result.command_results[0]
        assert command_result.exit_code == TIMEOUT_EXIT_CODE
        assert "partial" in command_result.stdout

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", ["sequential", "parallel"])
    async def test_unspawnable_command_is_a_result(self, strategy):
        """Test a command the OS refuses to spawn fails with 127 in both modes."""
        result = await GateRunner().run(["echo hi\x00there"], strategy=strategy)

        assert result.succeeded is False
        assert result.command_results[0].exit_code == SPAWN_ERROR_EXIT_CODE
        assert result.first_failure_message

    @pytest.mark.asyncio
    async def test_missing_command_fails(self):
        """Test a command the shell cannot find fails with a non-zero exit."""
        result = await GateRunner().run(["speci-definitely-not-a-real-command-xyz"])

        assert result.succeeded is False
        assert result.command_results[0].exit_code == SPAWN_ERROR_EXIT_CODE

    @pytest.mark.asyncio
    async def test_commands_run_in_cwd(self, temp_project_dir, python_command):
        """Test commands inherit the runner's working directory."""
        result = await GateRunner(cwd=temp_project_dir).run(
            [python_command("import os; print(os.getcwd())")]
        )
        assert result.command_results[0].stdout.strip() == str(temp_project_dir.resolve())
