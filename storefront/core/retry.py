"""Bounded retry policy shared by the order dispatcher and the provider client.

Built on tenacity: exponential backoff capped at ``max_wait_seconds``,
optional jitter, a fixed attempt budget and a predicate deciding which
errors are transient.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

R = TypeVar("R")


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def is_transient_http_error(exc: BaseException) -> bool:
    """Network errors, timeouts, 429 and 5xx are transient; other 4xx are permanent."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return is_retryable_status(exc.response.status_code)
    return False


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_wait_seconds: float = 0.5
    max_wait_seconds: float = 8.0
    jitter_seconds: float = 0.0

    def wait_strategy(self) -> wait_base:
        strategy: wait_base = wait_exponential(multiplier=self.initial_wait_seconds, max=self.max_wait_seconds)
        if self.jitter_seconds > 0:
            strategy = strategy + wait_random(0, self.jitter_seconds)
        return strategy

    def backoff_for(self, attempt: int) -> float:
        # Deterministic part of the wait after ``attempt`` failed (1-based).
        return min(self.initial_wait_seconds * (2 ** (attempt - 1)), self.max_wait_seconds)

    def call(
        self,
        fn: Callable[[int], R],
        *,
        retry_if: Callable[[BaseException], bool] = is_transient_http_error,
        operation: str = "operation",
        sleep: Callable[[float], None] | None = None,
    ) -> R:
        """Run ``fn(attempt_number)`` until it succeeds, fails permanently or the budget is spent.

        The last exception is re-raised unchanged.
        """

        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            wait = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "%s failed on attempt %s/%s, retrying in %.2fs: %s",
                operation,
                state.attempt_number,
                self.max_attempts,
                wait,
                exc,
            )

        retrying = Retrying(
            retry=retry_if_exception(retry_if),
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=self.wait_strategy(),
            before_sleep=_log_retry,
            sleep=sleep or time.sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return fn(attempt.retry_state.attempt_number)
        raise RuntimeError("unexpected retry state")  # pragma: no cover
