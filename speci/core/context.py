"""Run context: everything one orchestration session needs, wired together.

There are no module-level singletons in speci. The CLI builds one
``RunContext`` per command and passes it down; tests build their own with
fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from speci.agents.copilot import CopilotAdapter
from speci.agents.invoker import AgentInvoker
from speci.config.loader import load_settings, resolve_path
from speci.config.settings import Settings
from speci.core.cleanup import ChildProcessRegistry, CleanupRegistry
from speci.core.gate_runner import GateRunner
from speci.core.lock import LockManager
from speci.core.progress import ProgressReader
from speci.core.run_log import RunLog


@dataclass
class RunContext:
    """Settings plus the collaborators built from them for one project."""

    settings: Settings
    project_root: Path
    lock: LockManager
    gate: GateRunner
    invoker: AgentInvoker
    adapter: CopilotAdapter
    progress: ProgressReader
    run_log: RunLog
    children: ChildProcessRegistry = field(default_factory=ChildProcessRegistry)
    cleanup: CleanupRegistry = field(default_factory=CleanupRegistry)

    @classmethod
    def from_settings(cls, settings: Settings, project_root: Path) -> RunContext:
        """Build the default collaborators for ``project_root``."""
        project_root = project_root.resolve()
        children = ChildProcessRegistry()
        adapter = CopilotAdapter(settings.copilot)
        return cls(
            settings=settings,
            project_root=project_root,
            lock=LockManager(resolve_path(project_root, settings.paths.lock)),
            gate=GateRunner(cwd=project_root),
            invoker=AgentInvoker(
                executable=adapter.executable,
                cwd=project_root,
                children=children,
            ),
            adapter=adapter,
            progress=ProgressReader(resolve_path(project_root, settings.paths.progress)),
            run_log=RunLog(resolve_path(project_root, settings.paths.logs)),
            children=children,
        )

    @classmethod
    def load(cls, start_dir: Path | None = None) -> RunContext:
        """Load configuration from ``start_dir`` and build the context."""
        settings, project_root = load_settings(start_dir)
        return cls.from_settings(settings, project_root)
