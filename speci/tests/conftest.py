"""Test fixtures for speci."""

from __future__ import annotations

import shlex
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from speci.config.settings import Settings

PROGRESS_HEADER = """# Progress

| Task ID | Title | File | Status | Priority | Complexity |
|---------|-------|------|--------|----------|------------|
"""


@pytest.fixture
def temp_project_dir() -> Generator[Path, None, None]:
    """Create a temporary project directory."""
    temp_dir = tempfile.mkdtemp(prefix="speci_test_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def write_progress(temp_project_dir: Path) -> Callable[..., Path]:
    """Write docs/PROGRESS.md with one table row per (task_id, title, status)."""

    def _write(*rows: tuple[str, str, str]) -> Path:
        path = temp_project_dir / "docs" / "PROGRESS.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        body = "".join(
            f"| {task_id} | {title} | src/{task_id.lower()}.ts | {status} | P1 | 2 |\n"
            for task_id, title, status in rows
        )
        path.write_text(PROGRESS_HEADER + body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings from camelCase config-file style data."""

    def _make(**sections: dict) -> Settings:
        return Settings(**sections)

    return _make


@pytest.fixture
def python_command() -> Callable[[str], str]:
    """Shell command running a Python snippet with the current interpreter."""

    def _command(code: str) -> str:
        return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"

    return _command
