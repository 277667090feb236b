"""Agent invocation result types and executable lookup."""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Union

AGENT_NOT_FOUND_MESSAGE = "Agent binary not found. Is it installed and in PATH?"


def find_npm_executable(name: str) -> str | None:
    """
    Find an npm-installed CLI executable, handling Windows .cmd files.

    Args:
        name: The CLI name (e.g., "copilot")

    Returns:
        Full path to executable, or None if not found.
    """
    exe = shutil.which(name)
    if exe:
        return exe

    # On Windows, npm installs create .cmd wrapper files
    if sys.platform == "win32":
        exe = shutil.which(f"{name}.cmd")
        if exe:
            return exe

        npm_path = Path(os.environ.get("APPDATA", "")) / "npm" / f"{name}.cmd"
        if npm_path.exists():
            return str(npm_path)

    return None


@dataclass(frozen=True)
class AgentSuccess:
    """The agent exited with code 0."""

    exit_code: Literal[0] = 0
    attempts: int = 1

    def __post_init__(self) -> None:
        if self.exit_code != 0:
            raise ValueError(f"AgentSuccess requires exit code 0, got {self.exit_code}")

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class AgentFailure:
    """The agent could not be run, or exited non-zero after all allowed attempts."""

    exit_code: int
    error_message: str
    attempts: int = 1

    def __post_init__(self) -> None:
        if self.exit_code == 0:
            raise ValueError("AgentFailure cannot carry exit code 0")
        if not self.error_message.strip():
            raise ValueError("AgentFailure requires a non-empty error message")

    @property
    def succeeded(self) -> bool:
        return False


AgentInvocationResult = Union[AgentSuccess, AgentFailure]
