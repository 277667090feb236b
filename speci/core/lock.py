"""Crash-safe lock file for the orchestration run.

One lock file per project marks an active run. Records are published with a
temp-file-then-link pattern so that no reader ever sees a half-written file
and two racing acquirers cannot both win. A lock whose owner process is gone
is stale: the next acquirer renames it aside, checks it is still the record it
judged stale, and only then deletes it.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from speci.core.liveness import LivenessProbe, is_process_alive
from speci.errors import LockHeldError
from speci.utils import format_elapsed

logger = logging.getLogger(__name__)

LOCK_SCHEMA_VERSION = "1.0.0"

_LEGACY_TIMESTAMP = re.compile(r"(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})")

# errno values meaning "this filesystem cannot hard-link"
_LINK_UNSUPPORTED = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EXDEV, errno.EMLINK}


class LockMetadata(BaseModel):
    """Optional progress details recorded by the lock holder."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    iteration: int | None = None
    task_id: str | None = None
    state: str | None = None


class LockRecord(BaseModel):
    """An active orchestration run, as stored in the lock file."""

    model_config = ConfigDict(frozen=True)

    version: str = LOCK_SCHEMA_VERSION
    pid: int
    started: datetime = Field(default_factory=lambda: datetime.now(UTC))
    command: str = "unknown"
    metadata: LockMetadata | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


@dataclass(frozen=True)
class LockInfo:
    """Snapshot of the lock file for status displays and staleness checks."""

    is_locked: bool
    pid: int | None = None
    started: datetime | None = None
    command: str | None = None
    metadata: LockMetadata | None = None
    elapsed: str | None = None
    is_stale: bool = False

    def to_dict(self) -> dict:
        return {
            "isLocked": self.is_locked,
            "pid": self.pid,
            "started": self.started.isoformat() if self.started else None,
            "command": self.command,
            "metadata": (
                self.metadata.model_dump(by_alias=True, exclude_none=True)
                if self.metadata
                else None
            ),
            "elapsed": self.elapsed,
            "isStale": self.is_stale,
        }


def parse_lock_content(content: str) -> LockRecord | None:
    """
    Parse lock file content in the JSON format or the legacy text format.

    Legacy files look like ``Started: 2024-01-01 12:00:00\\nPID: 1234`` and are
    read with ``command="unknown"``.

    Returns:
        The parsed record, or None if the content is not a recognisable lock.
    """
    stripped = content.strip()
    if stripped.startswith("{"):
        try:
            return LockRecord.model_validate(json.loads(stripped))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.debug("Malformed JSON lock file: %s", e)
            return None

    started: datetime | None = None
    pid: int | None = None
    for line in stripped.splitlines():
        if line.startswith("Started: "):
            match = _LEGACY_TIMESTAMP.search(line)
            if match:
                try:
                    started = datetime(*(int(part) for part in match.groups()))
                except ValueError:
                    started = None
        elif line.startswith("PID: "):
            try:
                pid = int(line[len("PID: "):].strip())
            except ValueError:
                pid = None

    if pid is None or started is None:
        return None
    return LockRecord(version="legacy", pid=pid, started=started, command="unknown")


class LockManager:
    """
    File-based mutual exclusion for one project's orchestration run.

    ``acquire`` is the only operation that raises for an expected condition
    (``LockHeldError``). ``release`` and ``inspect`` never raise: they run
    from cleanup paths and signal handlers.
    """

    def __init__(
        self,
        lock_path: Path | str,
        liveness: LivenessProbe = is_process_alive,
    ) -> None:
        self.lock_path = Path(lock_path)
        self._liveness = liveness

    def acquire(
        self,
        pid: int | None = None,
        command: str = "run",
        metadata: LockMetadata | None = None,
    ) -> LockRecord:
        """
        Take the lock for this run.

        Args:
            pid: Owner process ID (defaults to the current process).
            command: Name of the top-level command taking the lock.
            metadata: Optional iteration/task/state details.

        Returns:
            The record written to the lock file.

        Raises:
            LockHeldError: If a live (or unreadable) lock already exists.
            OSError: If the lock directory or file cannot be written.
        """
        owner = os.getpid() if pid is None else pid

        info = self.inspect()
        if info.is_locked:
            if not info.is_stale:
                raise LockHeldError(info.pid, info.elapsed, info.command)
            self._remove_stale(info)

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        record = LockRecord(pid=owner, command=command, metadata=metadata)
        self._publish(record)
        logger.debug("Acquired lock %s (PID %d, command %s)", self.lock_path, owner, command)
        return record

    def release(self) -> None:
        """Delete the lock file if present. Logs instead of raising."""
        try:
            self.lock_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not release lock file %s: %s", self.lock_path, e)

    def force_release(self) -> LockInfo:
        """Override an existing lock (``--force``). Returns what was removed."""
        info = self.inspect()
        if info.is_locked:
            logger.warning(
                "Overriding lock held by PID %s (command: %s, elapsed: %s)",
                info.pid if info.pid is not None else "unknown",
                info.command or "unknown",
                info.elapsed or "unknown",
            )
        self.release()
        return info

    def inspect(self) -> LockInfo:
        """Read the current lock state. Corrupt or unreadable files count as locked."""
        try:
            content = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LockInfo(is_locked=False)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Lock file %s exists but cannot be read: %s", self.lock_path, e)
            return LockInfo(is_locked=True)

        record = parse_lock_content(content)
        if record is None:
            return LockInfo(is_locked=True)

        try:
            alive = self._liveness(record.pid)
        except Exception as e:
            logger.warning("Liveness check for PID %d failed: %s", record.pid, e)
            alive = True

        return LockInfo(
            is_locked=True,
            pid=record.pid,
            started=record.started,
            command=record.command,
            metadata=record.metadata,
            elapsed=format_elapsed(record.started),
            is_stale=not alive,
        )

    @contextmanager
    def held(
        self,
        pid: int | None = None,
        command: str = "run",
        metadata: LockMetadata | None = None,
    ) -> Iterator[LockRecord]:
        """Hold the lock for the duration of a ``with`` block."""
        record = self.acquire(pid=pid, command=command, metadata=metadata)
        try:
            yield record
        finally:
            self.release()

    def _remove_stale(self, stale: LockInfo) -> None:
        logger.warning(
            "Removing stale lock %s (PID %s is not running, started %s ago)",
            self.lock_path,
            stale.pid,
            stale.elapsed,
        )
        # Claim the file first: a racing acquirer may already have replaced it
        claimed = self.lock_path.with_name(f"{self.lock_path.name}.{uuid4().hex[:8]}.stale")
        try:
            os.rename(self.lock_path, claimed)
        except FileNotFoundError:
            # Already gone; the exclusive publish decides who wins
            return
        except OSError as e:
            logger.warning("Could not remove stale lock %s: %s", self.lock_path, e)
            raise

        try:
            try:
                record = parse_lock_content(claimed.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError):
                record = None

            if record is not None and record.pid == stale.pid and record.started == stale.started:
                return

            # Not the file we judged stale: put it back and back off
            self._restore(claimed)
            if record is None:
                raise LockHeldError(None, None, None)
            raise LockHeldError(record.pid, format_elapsed(record.started), record.command)
        finally:
            try:
                claimed.unlink(missing_ok=True)
            except OSError as e:
                logger.debug("Could not remove claimed lock %s: %s", claimed, e)

    def _restore(self, claimed: Path) -> None:
        try:
            os.link(claimed, self.lock_path)
        except FileExistsError:
            # Someone else published meanwhile; their lock stands
            logger.warning("Lock %s was replaced while restoring it", self.lock_path)
        except OSError as e:
            if e.errno not in _LINK_UNSUPPORTED:
                raise
            os.replace(claimed, self.lock_path)

    def _publish(self, record: LockRecord) -> None:
        """Write ``record`` to a temp sibling and move it into place atomically."""
        tmp_path = self.lock_path.with_name(f"{self.lock_path.name}.{uuid4().hex[:8]}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(record.to_json())
                f.flush()
                os.fsync(f.fileno())

            try:
                # link() fails if the destination exists, unlike rename()
                os.link(tmp_path, self.lock_path)
            except FileExistsError:
                info = self.inspect()
                raise LockHeldError(info.pid, info.elapsed, info.command) from None
            except OSError as e:
                if e.errno not in _LINK_UNSUPPORTED:
                    raise
                logger.debug("Hard links unsupported (%s), falling back to rename", e)
                os.replace(tmp_path, self.lock_path)
        finally:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug("Could not remove temp lock %s: %s", tmp_path, cleanup_error)
