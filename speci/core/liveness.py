"""Process liveness probing.

``is_process_alive`` answers one question for the lock manager: could the
process that wrote a lock still be running? Errors that leave the answer in
doubt count as alive, so an active lock is never stolen.
"""

from __future__ import annotations

import errno
import logging
import os
import sys
from typing import Callable

import psutil

logger = logging.getLogger(__name__)

LivenessProbe = Callable[[int], bool]


def _posix_is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except OSError as e:
        if e.errno == errno.ESRCH:
            return False
        logger.debug("Liveness probe for PID %d inconclusive: %s", pid, e)
        return True
    return True


def _windows_is_alive(pid: int) -> bool:
    # os.kill(pid, 0) terminates the target on Windows; ask the process table.
    try:
        return psutil.pid_exists(pid)
    except (psutil.Error, OSError) as e:
        logger.debug("Liveness probe for PID %d inconclusive: %s", pid, e)
        return True


def is_process_alive(pid: int) -> bool:
    """
    Check whether ``pid`` refers to a running process.

    Args:
        pid: Process ID read from a lock record.

    Returns:
        False only when the process is known not to exist.
    """
    if pid <= 0:
        return False
    if sys.platform == "win32":
        return _windows_is_alive(pid)
    return _posix_is_alive(pid)
