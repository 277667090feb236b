"""Tests for cleanup and signal handling."""

from __future__ import annotations

import asyncio
import signal
import sys

import pytest

from speci.core.cleanup import ChildProcessRegistry, CleanupRegistry, SignalHandlers


class TestCleanupRegistry:
    """Tests for CleanupRegistry."""

    @pytest.mark.asyncio
    async def test_runs_lifo_once(self):
        """Test callbacks run in reverse order and only on the first run()."""
        calls: list[str] = []
        registry = CleanupRegistry()
        registry.register(lambda: calls.append("lock"))
        registry.register(lambda: calls.append("log"))

        async def stop_children() -> None:
            calls.append("children")

        registry.register(stop_children)

        await registry.run()
        await registry.run()

        assert calls == ["children", "log", "lock"]
        assert registry.has_run is True

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_others(self):
        calls: list[str] = []
        registry = CleanupRegistry()
        registry.register(lambda: calls.append("first"))

        def broken() -> None:
            raise RuntimeError("boom")

        registry.register(broken)

        await registry.run()

        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_timeout_bounds_cleanup(self):
        """Test a hung callback cannot block shutdown past the timeout."""
        registry = CleanupRegistry(timeout=0.1)

        async def hang() -> None:
            await asyncio.sleep(30)

        registry.register(hang)

        await asyncio.wait_for(registry.run(), timeout=5)
        assert registry.has_run is True

    @pytest.mark.asyncio
    async def test_unregister(self):
        calls: list[str] = []
        registry = CleanupRegistry()

        def callback() -> None:
            calls.append("ran")

        registry.register(callback)
        registry.unregister(callback)
        await registry.run()

        assert calls == []


class TestChildProcessRegistry:
    """Tests for ChildProcessRegistry."""

    @pytest.mark.asyncio
    async def test_terminate_all_stops_children(self):
        children = ChildProcessRegistry()
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-c", "import time; time.sleep(30)"
        )
        children.track(process)
        assert len(children) == 1

        await children.terminate_all(timeout=5)

        assert process.returncode is not None
        assert len(children) == 0

    @pytest.mark.asyncio
    async def test_terminate_all_with_no_children(self):
        await ChildProcessRegistry().terminate_all()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
class TestSignalHandlers:
    """Tests for SIGINT/SIGTERM handling."""

    @pytest.mark.asyncio
    async def test_sigterm_cancels_task(self):
        """Test SIGTERM cancels the running task and maps to exit code 143."""
        handlers = SignalHandlers(ChildProcessRegistry())
        task = asyncio.ensure_future(asyncio.sleep(30))
        handlers.install(task)
        try:
            handlers._handle(signal.SIGTERM)
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            handlers.remove()

        assert handlers.exit_code == 143

    @pytest.mark.asyncio
    async def test_sigint_exit_code(self):
        handlers = SignalHandlers(ChildProcessRegistry())
        task = asyncio.ensure_future(asyncio.sleep(30))
        handlers.install(task)
        try:
            handlers._handle(signal.SIGINT)
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            handlers.remove()

        assert handlers.exit_code == 130

    @pytest.mark.asyncio
    async def test_second_sigint_force_exits(self):
        handlers = SignalHandlers(ChildProcessRegistry())
        task = asyncio.ensure_future(asyncio.sleep(30))
        handlers.install(task)
        try:
            handlers._handle(signal.SIGINT)
            with pytest.raises(SystemExit) as exc_info:
                handlers._handle(signal.SIGINT)
            assert exc_info.value.code == 130
        finally:
            handlers.remove()
            await asyncio.gather(task, return_exceptions=True)

    def test_no_signal_no_exit_code(self):
        assert SignalHandlers(ChildProcessRegistry()).exit_code is None
