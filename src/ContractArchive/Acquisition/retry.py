"""Tenacity retry strategy for acquisition HTTP calls.

Provides:
- Retryability classification over the transport error taxonomy
- Exponential backoff with bounded jitter, capped
- Retry-After aware wait for ``429`` responses
- Tenacity controller builder with injectable sleep for tests
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

import tenacity
from tenacity import RetryCallState, retry_if_exception, stop_after_attempt

from .config import RetrySettings
from .errors import HttpStatusError, NetworkError

LOGGER = logging.getLogger(__name__)


def is_retryable_error(exc: BaseException) -> bool:
    """True for connection failures, ``5xx`` and ``429``; everything else aborts."""
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, HttpStatusError):
        return exc.retryable
    return False


def compute_backoff(
    attempt_index: int,
    *,
    base_s: float,
    cap_s: float,
    jitter: float = 0.0,
) -> float:
    """Delay after failed attempt ``attempt_index`` (0-indexed).

    Args:
        attempt_index: Zero-based index of the attempt that just failed.
        base_s: Base delay in seconds.
        cap_s: Upper bound applied after jitter.
        jitter: Jitter fraction already drawn, in ``[0, 0.1]``.

    Returns:
        ``min(base * 2**k * (1 + jitter), cap)``
    """
    return min(base_s * (2**attempt_index) * (1.0 + jitter), cap_s)


class _WaitBackoffOrRetryAfter(tenacity.wait.wait_base):
    """Exponential jittered backoff that defers to a capped Retry-After on 429."""

    def __init__(
        self,
        settings: RetrySettings,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        cap = self.settings.max_delay_s
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None and outcome.failed else None
        if isinstance(exc, HttpStatusError) and exc.status == 429 and exc.retry_after is not None:
            wait_s = min(max(exc.retry_after, 0.0), cap)
            LOGGER.debug("Using Retry-After: %ss (capped at %ss)", wait_s, cap)
            return wait_s
        jitter = self.rng() * self.settings.jitter_fraction
        return compute_backoff(
            retry_state.attempt_number - 1,
            base_s=self.settings.base_delay_s,
            cap_s=cap,
            jitter=jitter,
        )


def _before_sleep_hook(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None else None
    wait_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
    LOGGER.info(
        "retry attempt=%s wait_ms=%d error=%s",
        retry_state.attempt_number,
        int(wait_s * 1000),
        exc,
    )


def build_retrying(
    settings: RetrySettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[Callable[[], float]] = None,
) -> tenacity.Retrying:
    """Build a Tenacity controller for one logical request.

    Args:
        settings: Retry policy.
        sleep: Sleep function, replaced in tests to record delays.
        rng: Jitter source returning floats in ``[0, 1)``.

    Returns:
        ``tenacity.Retrying`` that re-raises the last classified error once
        attempts are exhausted.
    """
    return tenacity.Retrying(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(settings.max_attempts),
        wait=_WaitBackoffOrRetryAfter(settings, rng or random.random),
        sleep=sleep,
        before_sleep=_before_sleep_hook,
        reraise=True,
    )


__all__ = ["build_retrying", "compute_backoff", "is_retryable_error"]
