"""Tenacity-based retry utilities for agent invocations.

The retry decision is made on exit codes, not exceptions: the invoker hands
tenacity each attempt's outcome and the policy's set of retryable codes
decides whether another attempt is made.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# curl-style and HTTP codes the agent CLI exits with on transient faults
DEFAULT_RETRYABLE_EXIT_CODES: frozenset[int] = frozenset(
    {
        429,  # rate limited
        52,  # empty reply from server
        124,  # timeout
        7,  # could not connect
        6,  # could not resolve host
    }
)


class RetryPolicy(BaseModel):
    """Bounded retry configuration for the agent invoker."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, gt=0)
    max_delay_ms: int = Field(default=4000, gt=0)
    retryable_exit_codes: frozenset[int] = DEFAULT_RETRYABLE_EXIT_CODES

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> RetryPolicy:
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        return self

    @field_serializer("retryable_exit_codes")
    def _serialize_codes(self, codes: frozenset[int]) -> list[int]:
        return sorted(codes)

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return self.max_retries + 1

    def is_retryable(self, exit_code: int) -> bool:
        return exit_code in self.retryable_exit_codes

    def delay_ms(self, attempt_index: int) -> int:
        """Backoff before the attempt following ``attempt_index`` (0-based)."""
        return min(self.max_delay_ms, self.base_delay_ms * 2**attempt_index)


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log the upcoming retry with its backoff."""
    outcome = retry_state.outcome.result() if retry_state.outcome else None
    exit_code = getattr(outcome, "exit_code", "unknown")
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Retry %d after %dms (exit code %s)",
        retry_state.attempt_number,
        round(delay * 1000),
        exit_code,
    )


def create_async_retrying(
    policy: RetryPolicy,
    should_retry: Callable[[Any], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """
    Build an ``AsyncRetrying`` controller from a RetryPolicy.

    The wait before attempt ``n + 1`` is ``min(max, base * 2**n)`` where ``n``
    is the 0-based index of the failed attempt. When attempts run out the last
    outcome is returned instead of raising ``RetryError``.

    Args:
        policy: Retry limits and backoff bounds.
        should_retry: Predicate over an attempt's outcome.
        sleep: Awaitable sleep used between attempts (seconds).

    Returns:
        A configured tenacity ``AsyncRetrying`` instance.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_ms / 1000,
            exp_base=2,
            min=0,
            max=policy.max_delay_ms / 1000,
        ),
        retry=retry_if_result(should_retry),
        before_sleep=log_retry_attempt,
        retry_error_callback=lambda state: state.outcome.result(),
        sleep=sleep,
        reraise=True,
    )
