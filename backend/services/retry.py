"""Exponential-backoff retry for provider calls.

Only transient failures (see
:func:`integrations.plaid_errors.is_transient_error`) are retried;
anything else propagates on the first attempt. ``sleep`` is injectable
so tests can record the delays instead of waiting them out.
"""

import logging
import time
from typing import Callable, TypeVar

from integrations.plaid_errors import is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float | None = None,
) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based).

    ``base_delay * 2 ** (attempt - 1)``, capped at ``max_delay`` if given.
    """
    delay = base_delay * (2 ** (attempt - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def with_retry(
    operation: Callable[[], T],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds or retries run out.

    Args:
        operation: Zero-argument callable to invoke.
        max_retries: Retries after the first attempt, so at most
            ``max_retries + 1`` calls in total.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound on any single delay.
        on_retry: Called with ``(attempt, error, delay)`` before each wait.
        is_retryable: Decides whether an exception is worth retrying.
        sleep: Blocking wait, ``time.sleep`` by default.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        The first non-retryable exception, or the last exception once
        retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= max_retries:
                raise
            attempt += 1
            delay = calculate_backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Transient error (%s), retry %d/%d in %.1fs",
                exc, attempt, max_retries, delay,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)
