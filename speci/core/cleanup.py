"""Shutdown cleanup: tracked child processes and LIFO cleanup callbacks.

Both registries are owned by a RunContext; nothing here is module-global.
Cleanup may be triggered by a signal and by normal exit of the same run, so
``CleanupRegistry.run`` executes at most once.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import sys
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)

CleanupFn = Callable[[], Union[None, Awaitable[None]]]

CLEANUP_TIMEOUT_SECONDS = 5.0
KILL_TIMEOUT_SECONDS = 5.0


class ChildProcessRegistry:
    """Tracks in-flight child processes so an interrupted run can stop them."""

    def __init__(self) -> None:
        self._children: set[asyncio.subprocess.Process] = set()

    def track(self, process: asyncio.subprocess.Process) -> None:
        self._children.add(process)

    def untrack(self, process: asyncio.subprocess.Process) -> None:
        self._children.discard(process)

    def __len__(self) -> int:
        return len(self._children)

    async def terminate_all(self, timeout: float = KILL_TIMEOUT_SECONDS) -> None:
        """SIGTERM every tracked child; SIGKILL those still alive after ``timeout``."""
        children = [c for c in self._children if c.returncode is None]
        self._children.clear()
        if not children:
            return

        logger.info("Terminating %d child process(es)", len(children))
        await asyncio.gather(
            *(self._terminate(child, timeout) for child in children),
            return_exceptions=True,
        )

    @staticmethod
    async def _terminate(child: asyncio.subprocess.Process, timeout: float) -> None:
        try:
            child.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(child.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Child PID %s ignored SIGTERM, killing", child.pid)
            try:
                child.kill()
            except ProcessLookupError:
                return
            await child.wait()

    def kill_all(self) -> None:
        """Kill every tracked child immediately, without waiting."""
        for child in list(self._children):
            if child.returncode is None:
                try:
                    child.kill()
                except ProcessLookupError:
                    pass
        self._children.clear()


class CleanupRegistry:
    """Cleanup callbacks run once, in reverse registration order."""

    def __init__(self, timeout: float = CLEANUP_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout
        self._callbacks: list[CleanupFn] = []
        self._ran = False

    @property
    def has_run(self) -> bool:
        return self._ran

    def register(self, fn: CleanupFn) -> None:
        self._callbacks.append(fn)

    def unregister(self, fn: CleanupFn) -> None:
        if fn in self._callbacks:
            self._callbacks.remove(fn)

    async def run(self) -> None:
        """Run all callbacks. Later calls are no-ops; a failing callback does not stop the rest."""
        if self._ran:
            return
        self._ran = True

        try:
            await asyncio.wait_for(self._run_callbacks(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Cleanup did not complete within %.0fs", self.timeout)

    async def _run_callbacks(self) -> None:
        while self._callbacks:
            fn = self._callbacks.pop()
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Cleanup error in %r: %s", fn, e, exc_info=True)


# Exit codes for a run ended by a signal (128 + signal number)
SIGNAL_EXIT_CODES: dict[int, int] = {
    signal.SIGINT: 130,
    signal.SIGTERM: 143,
}


class SignalHandlers:
    """
    Cancel the running orchestration task on SIGINT/SIGTERM.

    The first signal cancels the task so its ``finally`` blocks release the
    lock and stop children. A second SIGINT kills tracked children and exits
    immediately.
    """

    def __init__(self, children: ChildProcessRegistry) -> None:
        self.children = children
        self.received: int | None = None
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[int] = []

    def install(self, task: asyncio.Task) -> None:
        self._task = task
        self._loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(signum, self._handle, signum)
                self._installed.append(signum)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler;
                # KeyboardInterrupt still unwinds through the finally blocks.
                logger.debug("Signal handler for %s not supported", signum)

    def remove(self) -> None:
        if self._loop is not None:
            for signum in self._installed:
                self._loop.remove_signal_handler(signum)
        self._installed.clear()
        self._task = None

    @property
    def exit_code(self) -> int | None:
        if self.received is None:
            return None
        return SIGNAL_EXIT_CODES.get(self.received, 128 + self.received)

    def _handle(self, signum: int) -> None:
        if self.received == signal.SIGINT and signum == signal.SIGINT:
            print("\nForce exiting...", file=sys.stderr)
            self.children.kill_all()
            sys.exit(130)

        self.received = signum
        if signum == signal.SIGINT:
            print("\nInterrupted. Cleaning up...", file=sys.stderr)
        else:
            print("\nReceived SIGTERM. Shutting down gracefully...", file=sys.stderr)
        if self._task is not None and not self._task.done():
            self._task.cancel()
