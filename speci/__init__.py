"""
speci - spec-driven development loop for AI coding agents

Runs planning, task generation and implementation agents against a project,
validates every implementation with gate commands and keeps one run per
project through a crash-safe lock file.
"""

__version__ = "0.1.0"

from speci.core.context import RunContext
from speci.core.orchestrator import Orchestrator

__all__ = [
    "Orchestrator",
    "RunContext",
]
