# styletransform/providers/polling.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from .image_base import ErrorKind, ProviderError

log = logging.getLogger(__name__)


def poll_until(
    fetch: Callable[[], Optional[Any]],
    is_terminal: Callable[[Any], bool],
    interval: float,
    budget: float,
    *,
    provider: str,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    deadline: Optional[float] = None,
    initial: Optional[Any] = None,
) -> Any:
    """
    Poll `fetch()` until `is_terminal(state)` holds and return that state.

    The loop is bounded by wall-clock time (`budget` seconds from now, capped
    by an absolute `deadline` on the same clock), never by a poll count.
    `fetch` may return None for a round that produced no usable state
    (e.g. a transient network error); polling simply continues.
    Raises ProviderError(Timeout) when time runs out.
    """
    started = clock()
    stop_at = started + max(0.0, budget)
    if deadline is not None:
        stop_at = min(stop_at, deadline)

    state = initial
    polls = 0
    while state is None or not is_terminal(state):
        now = clock()
        if now >= stop_at:
            raise ProviderError(
                ErrorKind.TIMEOUT,
                f"no terminal status after {int(now - started)}s ({polls} polls)",
                provider=provider,
            )
        sleep(min(interval, max(0.0, stop_at - now)))
        polls += 1
        fresh = fetch()
        if fresh is not None:
            state = fresh
        log.debug("provider=%s event=poll n=%s state=%s", provider, polls, _status_of(state))

    return state


def _status_of(state: Any) -> Any:
    if isinstance(state, dict):
        return state.get("status")
    return state
