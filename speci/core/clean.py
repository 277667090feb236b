"""Remove generated task files and the progress file.

``clean`` refuses to touch anything while a lock file exists and only deletes
paths that resolve inside the project root. Running it twice is harmless.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from speci.config.loader import resolve_path
from speci.config.settings import PathsConfig
from speci.core.lock import LockManager
from speci.errors import CleanError, CleanRefusedError, ConfigError

logger = logging.getLogger(__name__)


def _inside(path: Path, root: Path) -> bool:
    return path == root or path.is_relative_to(root)


def clean_project(project_root: Path, paths: PathsConfig, lock: LockManager) -> list[Path]:
    """
    Delete the contents of the tasks directory and the progress file.

    Args:
        project_root: Resolved project root.
        paths: Configured project paths.
        lock: Lock manager for the project.

    Returns:
        The paths that were deleted (empty if there was nothing to clean).

    Raises:
        CleanRefusedError: A lock file exists.
        ConfigError: The tasks or progress path resolves outside the project.
        CleanError: Some entries could not be deleted.
    """
    if lock.inspect().is_locked:
        raise CleanRefusedError(
            "Cannot clean while speci is running. Wait for the active run to "
            "complete or remove the lock file."
        )

    root = project_root.resolve()
    tasks_dir = resolve_path(root, paths.tasks).resolve()
    progress_file = resolve_path(root, paths.progress).resolve()
    for target in (tasks_dir, progress_file):
        if not _inside(target, root):
            raise ConfigError(f"Configured path resolves outside the project root: {target}")

    deleted: list[Path] = []
    failed: list[str] = []

    if tasks_dir.is_dir():
        logger.warning("Deleting contents of %s", tasks_dir)
        try:
            entries = sorted(tasks_dir.iterdir())
        except OSError as e:
            raise CleanError(f"Could not list {tasks_dir}: {e}", [str(tasks_dir)]) from e
        for entry in entries:
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to delete %s: %s", entry, e)
                failed.append(str(entry))
            else:
                logger.debug("Deleted %s", entry)
                deleted.append(entry)

    if progress_file.exists():
        logger.warning("Deleting %s", progress_file)
        try:
            progress_file.unlink()
        except OSError as e:
            logger.warning("Failed to delete %s: %s", progress_file, e)
            failed.append(str(progress_file))
        else:
            deleted.append(progress_file)

    if failed:
        raise CleanError(f"Failed to delete: {', '.join(failed)}", failed)
    return deleted
