"""Core orchestration module."""

from speci.core.cleanup import ChildProcessRegistry, CleanupRegistry, SignalHandlers
from speci.core.gate_runner import (
    GateCommandResult,
    GateResult,
    GateRunner,
    can_retry,
)
from speci.core.liveness import is_process_alive
from speci.core.lock import LockInfo, LockManager, LockMetadata, LockRecord
from speci.core.progress import CurrentTask, ProgressReader, TaskStats
from speci.core.retry_utils import RetryPolicy, create_async_retrying
from speci.core.workflow_phases import AgentPhase, LoopState, RunOutcome

__all__ = [
    # Cleanup
    "ChildProcessRegistry",
    "CleanupRegistry",
    "SignalHandlers",
    # Gate
    "GateCommandResult",
    "GateResult",
    "GateRunner",
    "can_retry",
    # Lock
    "LockInfo",
    "LockManager",
    "LockMetadata",
    "LockRecord",
    "is_process_alive",
    # Progress
    "CurrentTask",
    "ProgressReader",
    "TaskStats",
    # Retry
    "RetryPolicy",
    "create_async_retrying",
    # Workflow
    "AgentPhase",
    "LoopState",
    "RunOutcome",
]
