from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout_s: float,
    initial_delay_s: float = 0.1,
    backoff: float = 2.0,
    max_delay_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> float:
    """Poll predicate with exponential backoff until it holds or timeout_s elapses.

    Returns the elapsed time on success. Raises TimeoutError carrying the
    elapsed time otherwise; callers translate it into their own error type.
    """

    start = clock()
    delay = initial_delay_s
    while True:
        if predicate():
            return clock() - start
        elapsed = clock() - start
        if elapsed >= timeout_s:
            raise TimeoutError(elapsed)
        pause = min(delay, max_delay_s, max(timeout_s - elapsed, 0.0))
        logger.debug("Condition not met after %.2fs; retrying in %.2fs", elapsed, pause)
        sleep(pause)
        delay *= backoff
