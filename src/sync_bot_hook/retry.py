"""Bounded retry with doubling backoff.

Only network-facing work goes through here: clones, fetches, pull request
creation and branch visibility polling against the forge. Local git work is
never retried.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from .observability import log_debug, log_warning

T = TypeVar("T")


def with_retry(
    max_attempts: int,
    initial_backoff: float,
    operation: Callable[[], T],
    *,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds or ``max_attempts`` calls failed.

    Sleeps ``initial_backoff`` seconds after the first failure and doubles
    the delay after each further one. There is no sleep after the last
    attempt; its exception is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    backoff = initial_backoff
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt >= max_attempts:
                log_warning(
                    f"Giving up on {description or 'operation'}",
                    attempts=attempt,
                    error=str(e),
                )
                raise
            log_debug(
                f"Retrying {description or 'operation'}",
                attempt=attempt,
                max_attempts=max_attempts,
                backoff=backoff,
                error=str(e),
            )
            sleep(backoff)
            backoff *= 2
    raise AssertionError("unreachable")  # pragma: no cover
