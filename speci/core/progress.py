"""Read loop state and task statistics from the progress file.

Task rows are markdown table rows whose first cell is a ``TASK_nnn`` id. The
status cell is found by scanning columns 3-5, which covers tables with and
without a File column.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from speci.core.workflow_phases import LoopState

logger = logging.getLogger(__name__)

_TASK_ROW = re.compile(r"^\s*\|\s*TASK_\d+\s*\|", re.IGNORECASE)

# Checked in priority order: the first matching state wins.
_STATE_PATTERNS: list[tuple[LoopState, re.Pattern[str]]] = [
    (LoopState.BLOCKED, re.compile(r"TASK_\d+\s*\|.*BLOCKED", re.IGNORECASE)),
    (LoopState.IN_REVIEW, re.compile(r"TASK_\d+\s*\|.*IN.REVIEW", re.IGNORECASE)),
    (LoopState.WORK_LEFT, re.compile(r"TASK_\d+\s*\|.*(NOT STARTED|IN PROGRESS)", re.IGNORECASE)),
]

COMPLETE_STATUSES = {"COMPLETE", "COMPLETED", "DONE"}
REVIEW_STATUSES = {"IN_REVIEW", "IN REVIEW"}
PENDING_STATUSES = {"NOT STARTED", "IN PROGRESS"}
VALID_STATUSES = COMPLETE_STATUSES | REVIEW_STATUSES | PENDING_STATUSES | {"BLOCKED"}
ACTIVE_STATUSES = {"IN PROGRESS"} | REVIEW_STATUSES

# Leading "|" yields an empty first element; real task tables have 6+ data columns
MIN_TASK_TABLE_COLUMNS = 7


@dataclass(frozen=True)
class TaskStats:
    total: int = 0
    completed: int = 0
    remaining: int = 0
    in_review: int = 0
    blocked: int = 0


@dataclass(frozen=True)
class CurrentTask:
    id: str
    title: str
    status: str


def _find_status(cols: list[str]) -> str | None:
    for value in cols[3:6]:
        status = value.strip().upper()
        if status in VALID_STATUSES:
            return status
    return None


class ProgressReader:
    """Parses the progress file on every call (the agents rewrite it between phases)."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read_lines(self) -> list[str] | None:
        try:
            return self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None

    def get_state(self) -> LoopState:
        lines = self._read_lines()
        if lines is None:
            return LoopState.NO_PROGRESS

        content = "\n".join(lines)
        for state, pattern in _STATE_PATTERNS:
            if pattern.search(content):
                return state
        return LoopState.DONE

    def get_task_stats(self) -> TaskStats:
        lines = self._read_lines()
        if lines is None:
            return TaskStats()

        total = completed = remaining = in_review = blocked = 0
        for line in lines:
            if not _TASK_ROW.match(line):
                continue
            cols = line.split("|")
            if len(cols) < MIN_TASK_TABLE_COLUMNS:
                continue
            status = _find_status(cols)
            if status is None:
                continue

            total += 1
            if status in COMPLETE_STATUSES:
                completed += 1
            elif status == "BLOCKED":
                blocked += 1
            elif status in REVIEW_STATUSES:
                in_review += 1
            else:
                remaining += 1

        return TaskStats(
            total=total,
            completed=completed,
            remaining=remaining,
            in_review=in_review,
            blocked=blocked,
        )

    def get_current_task(self) -> CurrentTask | None:
        """First task that is IN PROGRESS or IN REVIEW."""
        lines = self._read_lines()
        if lines is None:
            return None

        for line in lines:
            if not _TASK_ROW.match(line):
                continue
            cols = line.split("|")
            if len(cols) < 4:
                continue
            status = _find_status(cols)
            if status in ACTIVE_STATUSES:
                return CurrentTask(id=cols[1].strip(), title=cols[2].strip(), status=status)
        return None
