"""Retry helper with exponential backoff for channel transport clients.

Channel clients (SMTP, push messaging) use this to absorb transient provider
errors. The notification engine itself never retries: a send that still fails
after the client's own retries is reported, not resubmitted.
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


def compute_backoff_delay(
    attempt: int,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    jitter: float = 0.0,
) -> float:
    """Return the delay before retry number ``attempt`` (zero-based).

    delay = min(initial_delay * backoff_factor ** attempt, max_delay) + U(0, jitter)

    Example (initial_delay=1.0, backoff_factor=2.0, max_delay=5.0):
        attempt 0 -> 1s, attempt 1 -> 2s, attempt 2 -> 4s, attempt 3 -> 5s
    """
    delay = min(initial_delay * (backoff_factor**attempt), max_delay)
    if jitter > 0:
        delay += random.uniform(0, jitter)
    return delay


def retry_with_backoff(
    max_retries: int = 2,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    jitter: float = 0.0,
    exceptions: tuple[type[Exception], ...] = (ConnectionError, TimeoutError),
    should_retry: Optional[Callable[[Exception], bool]] = None,
) -> Callable[[F], F]:
    """Decorator to retry a function with exponential backoff.

    Args:
        max_retries: Number of retries after the first attempt (default: 2)
        initial_delay: Delay in seconds before the first retry (default: 1.0)
        backoff_factor: Multiplier applied to the delay after each retry (default: 2.0)
        max_delay: Upper bound for a single delay in seconds (default: 60.0)
        jitter: Maximum random seconds added to each delay (default: 0.0)
        exceptions: Exception types that are candidates for a retry
        should_retry: Optional predicate; when it returns False for a caught
            exception, the exception is raised immediately without retrying
            (e.g. HTTP 400/401/403 from a provider).

    Returns:
        Decorated function that will retry on failure

    Example:
        @retry_with_backoff(max_retries=2, exceptions=(ChannelTransportError,),
                            should_retry=lambda exc: exc.retryable)
        def push(to, text):
            ...
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        logger.debug(
                            "Function %s failed with non-retryable error: %s",
                            func.__name__,
                            e,
                            extra={"function": func.__name__, "exception_type": type(e).__name__},
                        )
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Function %s failed after %d attempts",
                            func.__name__,
                            max_retries + 1,
                            extra={
                                "function": func.__name__,
                                "total_attempts": max_retries + 1,
                                "exception_type": type(e).__name__,
                            },
                        )
                        raise

                    delay = compute_backoff_delay(
                        attempt,
                        initial_delay=initial_delay,
                        backoff_factor=backoff_factor,
                        max_delay=max_delay,
                        jitter=jitter,
                    )
                    logger.warning(
                        "Function %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                        func.__name__,
                        attempt + 1,
                        max_retries + 1,
                        e,
                        delay,
                        extra={
                            "function": func.__name__,
                            "retry_attempt": attempt + 1,
                            "max_retries": max_retries + 1,
                            "delay_seconds": delay,
                            "exception_type": type(e).__name__,
                        },
                    )
                    time.sleep(delay)

            raise RuntimeError("unreachable")  # pragma: no cover

        return wrapper  # type: ignore

    return decorator


__all__ = ["compute_backoff_delay", "retry_with_backoff"]
