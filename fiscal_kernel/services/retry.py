"""
Bounded retry for transient sequence contention.

Only ``SequenceContendedError`` is retried.  Eligibility failures,
exhaustion and invariant violations propagate on the first attempt.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from fiscal_kernel.exceptions import SequenceContendedError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def retry_on_contention(
    operation: Callable[[], T],
    max_attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation``, retrying on SequenceContendedError.

    The delay before attempt n+1 is ``backoff_seconds * 2 ** (n - 1)``.
    After ``max_attempts`` failures the last error is re-raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return operation()
        except SequenceContendedError as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "sequence_contention_retries_exhausted",
                    extra={"attempts": attempt, "sequence_id": exc.sequence_id},
                )
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.info(
                "sequence_contended",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": delay,
                    "sequence_id": exc.sequence_id,
                },
            )
            sleep(delay)
            attempt += 1
