"""Tests for the Copilot argv builder."""

from __future__ import annotations

from speci.agents.copilot import DEFAULT_PROMPT, CopilotAdapter
from speci.config.settings import CopilotConfig
from speci.core.workflow_phases import AgentPhase


class TestBuildArgs:
    """Tests for CopilotAdapter.build_args."""

    def test_default_invocation(self):
        adapter = CopilotAdapter(CopilotConfig())
        args = adapter.build_args(AgentPhase.IMPL)

        assert args[:3] == ["-p", DEFAULT_PROMPT, "--agent=speci-impl"]
        assert "--allow-all" in args
        assert args[args.index("--model") + 1] == "gpt-5.3-codex"
        assert args[-1] == "--no-ask-user"

    def test_prompt_and_yolo(self):
        adapter = CopilotAdapter(CopilotConfig(permissions="yolo"))
        args = adapter.build_args(AgentPhase.PLAN, "Build a CLI")

        assert args[1] == "Build a CLI"
        assert "--yolo" in args
        assert "--allow-all" not in args

    def test_strict_permissions_add_no_flag(self):
        adapter = CopilotAdapter(CopilotConfig(permissions="strict"))
        args = adapter.build_args(AgentPhase.REVIEW)

        assert "--yolo" not in args
        assert "--allow-all" not in args

    def test_model_omitted_when_unset(self):
        config = CopilotConfig.model_validate({"models": {"fix": None}})
        args = CopilotAdapter(config).build_args(AgentPhase.FIX)

        assert "--model" not in args

    def test_extra_flags_last(self):
        config = CopilotConfig(extra_flags=["--log-level", "debug"])
        args = CopilotAdapter(config).build_args(AgentPhase.TIDY)

        assert args[-3:] == ["--no-ask-user", "--log-level", "debug"]

    def test_format_command_quotes_spaces(self):
        adapter = CopilotAdapter(CopilotConfig())
        rendered = adapter.format_command(["-p", "two words", "--no-ask-user"])
        assert rendered == 'copilot -p "two words" --no-ask-user'


class TestAgentPhase:
    """Tests for AgentPhase helpers."""

    def test_agent_name(self):
        assert AgentPhase.REFACTOR.agent_name == "speci-refactor"

    def test_runs_gate(self):
        assert AgentPhase.IMPL.runs_gate is True
        assert AgentPhase.FIX.runs_gate is True
        assert AgentPhase.REVIEW.runs_gate is False
