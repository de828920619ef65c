"""Back-off helpers for re-acquiring an audio analysis session."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from .logging import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def _log_before_sleep(name: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        last = outcome.result() if outcome is not None and not outcome.failed else None
        logger.info(
            "retry.scheduled",
            operation=name,
            attempt=retry_state.attempt_number,
            delay_s=retry_state.next_action.sleep if retry_state.next_action else None,
            last_result=str(last) if last is not None else None,
        )

    return before_sleep


def _return_last_result(retry_state: RetryCallState) -> Any:
    logger.warning(
        "retry.exhausted",
        attempts=retry_state.attempt_number,
    )
    if retry_state.outcome is None:
        return None
    return retry_state.outcome.result()


def create_acquisition_retry(
    is_failure: Callable[[Any], bool],
    *,
    name: str = "acquisition",
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    max_attempts: int = 5,
    sleep: SleepFn | None = None,
) -> AsyncRetrying:
    """
    Create a retry strategy for an operation that reports failure by result.

    Failed results are retried with exponential back-off (initial_delay,
    2*initial_delay, ... capped at max_delay). When attempts run out the
    last result is returned instead of raising ``RetryError``, so callers
    always receive a tagged result they can inspect.

    Args:
        is_failure: Predicate applied to each result; True schedules a retry
        name: Operation name used in log records
        initial_delay: First back-off delay in seconds
        max_delay: Upper bound of any single delay in seconds
        max_attempts: Total number of attempts including the first
        sleep: Awaitable sleep used between attempts (virtual time in simulations)

    Returns:
        Configured AsyncRetrying instance
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_delay, max=max_delay),
        retry=retry_if_result(is_failure),
        sleep=sleep or asyncio.sleep,
        before_sleep=_log_before_sleep(name),
        retry_error_callback=_return_last_result,
        reraise=True,
    )


__all__ = ["SleepFn", "create_acquisition_retry"]
