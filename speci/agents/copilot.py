"""Copilot CLI adapter: builds the argv for one agent phase."""

from __future__ import annotations

import logging

from speci.agents.base import find_npm_executable
from speci.config.settings import CopilotConfig
from speci.core.workflow_phases import AgentPhase

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Execute agent instructions"


class CopilotAdapter:
    """
    Adapter for the Copilot agent CLI.

    Agents are invoked in one-shot mode::

        copilot -p <prompt> --agent=speci-<phase> [--allow-all|--yolo]
                [--model <model>] --no-ask-user [extra flags...]
    """

    def __init__(self, config: CopilotConfig | None = None) -> None:
        self.config = config or CopilotConfig()
        self._executable: str | None = None

    @property
    def executable(self) -> str:
        """Resolved agent executable (falls back to the bare name)."""
        if self._executable is None:
            self._executable = (
                find_npm_executable(self.config.executable) or self.config.executable
            )
        return self._executable

    @property
    def is_available(self) -> bool:
        return find_npm_executable(self.config.executable) is not None

    def build_args(
        self,
        phase: AgentPhase,
        prompt: str | None = None,
    ) -> list[str]:
        """
        Build CLI arguments for ``phase``.

        Args:
            phase: Agent phase to run.
            prompt: Instruction text; a generic one is used when omitted.

        Returns:
            Argument list, excluding the executable.
        """
        args = ["-p", prompt or DEFAULT_PROMPT, f"--agent={phase.agent_name}"]

        if self.config.permissions == "allow-all":
            args.append("--allow-all")
        elif self.config.permissions == "yolo":
            args.append("--yolo")

        model = self.config.models.for_phase(phase.value)
        if model:
            args.extend(["--model", model])

        args.append("--no-ask-user")
        args.extend(self.config.extra_flags)
        return args

    def format_command(self, args: list[str]) -> str:
        """Shell-like rendering of an invocation for logs."""
        rendered = [self.config.executable]
        for arg in args:
            rendered.append(f'"{arg}"' if " " in arg else arg)
        return " ".join(rendered)
