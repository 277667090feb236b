"""Per-session run log: one file per ``run``/``yolo`` invocation."""

from __future__ import annotations

import logging
import os
from datetime import datetime, UTC
from pathlib import Path

from speci.core.gate_runner import GateResult

logger = logging.getLogger(__name__)


class _UTCFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds")


class RunLog:
    """
    Structured event log for one orchestration session.

    Events go to a dedicated non-propagating logger with a single
    ``FileHandler``, so they never reach the console. If the log file cannot
    be created, events are dropped and the run continues.
    """

    def __init__(self, logs_dir: Path | str) -> None:
        self.logs_dir = Path(logs_dir)
        self.path: Path | None = None
        self._logger = logging.getLogger(f"speci.session.{id(self):x}")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._handler: logging.FileHandler | None = None

    @property
    def is_open(self) -> bool:
        return self._handler is not None

    def open(self) -> Path | None:
        """Create the log file and write the session header."""
        started = datetime.now(UTC)
        path = self.logs_dir / f"speci-run-{started.strftime('%Y%m%d-%H%M%S')}-{os.getpid()}.log"
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not create run log in %s: %s", self.logs_dir, e)
            return None

        handler.setFormatter(_UTCFormatter("[%(asctime)s] %(message)s"))
        self._handler = handler
        self._logger.addHandler(handler)
        self.path = path

        # Header lines are written raw, without the timestamp prefix
        handler.stream.write(
            f"=== Speci Run Session ===\nStarted: {started.isoformat()}\nPID: {os.getpid()}\n\n"
        )
        handler.flush()
        logger.debug("Run log: %s", path)
        return path

    def close(self) -> None:
        if self._handler is None:
            return
        self._logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def iteration(self, number: int, event: str) -> None:
        self._logger.info("ITERATION %d %s", number, event)

    def state(self, state: str) -> None:
        self._logger.info("STATE %s", state)

    def agent(self, phase: str, event: str, attempt: int | None = None) -> None:
        suffix = f" (attempt {attempt})" if attempt else ""
        self._logger.info("AGENT %s %s%s", phase.upper(), event, suffix)

    def gate(self, result: GateResult) -> None:
        self._logger.info("GATE %s", "PASSED" if result.succeeded else "FAILED")
        for r in result.command_results:
            status = "PASS" if r.succeeded else f"FAIL (exit {r.exit_code})"
            self._logger.info("  - %s: %s", r.command, status)
