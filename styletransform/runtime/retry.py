# styletransform/runtime/retry.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests

from styletransform.providers.image_base import ErrorKind, ProviderError

log = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_KINDS = {ErrorKind.RATE_LIMITED, ErrorKind.UNAVAILABLE}
BACKOFF_MODES = ("linear", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 3.0
    backoff: str = "linear"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff not in BACKOFF_MODES:
            raise ValueError(f"backoff must be one of {BACKOFF_MODES}")


def is_retryable(err: BaseException) -> bool:
    """Rate limits, 5xx and network-level failures; never auth/validation/timeouts of a poll."""
    if isinstance(err, ProviderError):
        return err.kind in RETRYABLE_KINDS
    return isinstance(err, (requests.ConnectionError, requests.Timeout))


def backoff_delay(attempt: int, base_delay: float, backoff: str = "linear") -> float:
    """Delay after failed attempt number `attempt` (1-based)."""
    if backoff == "exponential":
        return base_delay * (2 ** (attempt - 1))
    return base_delay * attempt


def with_retry(
    fn: Callable[[], T],
    max_attempts: int = 3,
    is_retryable: Callable[[BaseException], bool] = is_retryable,
    *,
    base_delay: float = 3.0,
    backoff: str = "linear",
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, float, BaseException], None]] = None,
    label: str = "call",
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call `fn` up to `max_attempts` times (first try included).

    Only errors accepted by `is_retryable` consume retry budget; anything
    else propagates at once. When the budget runs out the last error is
    re-raised unchanged.

    With a `deadline` (absolute, on `clock`), a retry whose backoff would
    end at or past it is not scheduled; a Timeout ProviderError is raised
    instead, chained to the last error.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        log.debug("event=retry.attempt target=%s attempt=%s/%s", label, attempt, max_attempts)
        try:
            return fn()
        except Exception as e:
            if attempt >= max_attempts or not is_retryable(e):
                raise
            delay = backoff_delay(attempt, base_delay, backoff)
            if deadline is not None and clock() + delay >= deadline:
                log.info("event=retry.deadline target=%s attempt=%s/%s error=%s", label, attempt, max_attempts, e)
                raise ProviderError(
                    ErrorKind.TIMEOUT,
                    f"deadline reached after {attempt} attempt(s): {e}",
                    provider=label,
                ) from e
            log.info(
                "event=retry.scheduled target=%s attempt=%s/%s delay_s=%.2f error=%s",
                label,
                attempt,
                max_attempts,
                delay,
                e,
            )
            if on_retry is not None:
                on_retry(attempt, delay, e)
            sleep(delay)
