#!/usr/bin/env python3
"""
Bounded waiting and retrying.

- Deadline            : an overall cycle deadline with an injectable clock
- call_with_retries   : tenacity-based bounded backoff for retryable engine errors
- wait_for            : poll a condition until it holds, the deadline passes or the wait is cancelled

Clocks and sleep functions are injectable so tests never sleep for real.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
from tenacity.stop import stop_base

from .error_handling import VerificationTimedOut, is_retryable

logger = logging.getLogger(__name__)


class WaitTimeout(TimeoutError):
    pass


class WaitCancelled(Exception):
    pass


class Deadline:
    def __init__(self, timeout: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.timeout = timeout
        self.expires_at = clock() + timeout

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self, stage: str, **context: Any) -> None:
        if self.expired():
            raise VerificationTimedOut(f"Verification deadline of {self.timeout}s exceeded during {stage}", context)


class stop_at_deadline(stop_base):
    def __init__(self, deadline: Optional[Deadline]):
        self.deadline = deadline

    def __call__(self, retry_state) -> bool:
        return self.deadline is not None and self.deadline.expired()


class stop_when_cancelled(stop_base):
    def __init__(self, cancel: Optional[threading.Event]):
        self.cancel = cancel

    def __call__(self, retry_state) -> bool:
        return self.cancel is not None and self.cancel.is_set()


def call_with_retries(
    fn: Callable[[], Any],
    max_attempts: int = 3,
    deadline: Optional[Deadline] = None,
    sleep: Callable[[float], None] = time.sleep,
    min_wait: float = 0.5,
    max_wait: float = 8.0,
) -> Any:
    """Call `fn`, retrying retryable engine errors. The last error is re-raised when retries run out."""
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts) | stop_at_deadline(deadline),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return retrying(fn)


def wait_for(
    condition: Callable[[], Any],
    timeout: float,
    interval: float = 10.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], None]] = None,
    cancel: Optional[threading.Event] = None,
) -> Any:
    """
    Poll `condition` until it returns a truthy value, which is returned.
    Retryable engine errors raised by the condition count as "not yet".
    Raises WaitTimeout when the deadline passes and WaitCancelled when `cancel` is set.
    """
    deadline = Deadline(timeout, clock=clock)
    if sleep is None:
        sleep = cancel.wait if cancel is not None else time.sleep
    retrying = Retrying(
        stop=stop_at_deadline(deadline) | stop_when_cancelled(cancel),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda r: not r) | retry_if_exception(is_retryable),
        sleep=sleep,
    )
    try:
        return retrying(condition)
    except RetryError as e:
        if cancel is not None and cancel.is_set():
            raise WaitCancelled("wait cancelled") from e
        last = e.last_attempt
        if last.failed:
            raise WaitTimeout(f"condition not met within {timeout}s: {last.exception()}") from e
        raise WaitTimeout(f"condition not met within {timeout}s") from e
