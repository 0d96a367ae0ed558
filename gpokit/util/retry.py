"""
Retry and polling helpers for operations against domain controllers.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import TypeVar

from gpokit.exceptions import RetryableError

T = TypeVar("T")


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[Exception, int, int], None] | None = None,
):
    """
    Decorator to retry a function with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        initial_delay: Initial delay in seconds (default: 1.0)
        backoff_factor: Multiplier for delay after each failure (default: 2.0)
        max_delay: Maximum delay between retries (default: 60.0)
        retryable_exceptions: Tuple of exception types to retry (default: all)
        should_retry: Optional predicate; errors it rejects are raised immediately
        on_retry: Optional callback called on each retry: (error, attempt, max_attempts)

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_attempts=3, initial_delay=2.0)
        def list_gpos():
            return run_powershell("Get-GPO -All | ConvertTo-Json")
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    last_exception = e

                    if attempt == max_attempts:
                        break

                    if on_retry is not None:
                        on_retry(e, attempt, max_attempts)

                    time.sleep(min(delay, max_delay))
                    delay *= backoff_factor

            assert last_exception is not None
            raise RetryableError(last_exception, max_attempts, max_attempts)

        return wrapper

    return decorator


def poll_until(
    condition: Callable[[], bool],
    attempts: int = 10,
    interval: float = 5.0,
    sleep: Callable[[float], None] | None = None,
) -> bool:
    """
    Evaluate condition up to `attempts` times, sleeping `interval` between tries.

    Used for fixed-count waits such as waiting for a freshly imported GPO to
    show up on the domain controller.

    Returns:
        True as soon as condition() is truthy, False once attempts run out
    """
    sleep = sleep or time.sleep
    for attempt in range(attempts):
        if condition():
            return True
        if attempt < attempts - 1:
            sleep(interval)
    return False


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if a provider error should be retried.

    Retryable errors include:
    - Timeouts
    - Domain controller or RPC endpoint unreachable
    - Directory busy / replication in progress
    """
    error_msg = str(error).lower()

    if any(
        keyword in error_msg
        for keyword in [
            "timeout",
            "timed out",
            "rpc server is unavailable",
            "server is not operational",
            "unable to contact the server",
        ]
    ):
        return True

    if "the directory service is busy" in error_msg or "replication" in error_msg:
        return True

    return False


# Backoff used for PowerShell provider calls: 2s, 4s between three attempts.
PROVIDER_RETRY = {
    "max_attempts": 3,
    "initial_delay": 2.0,
    "backoff_factor": 2.0,
    "max_delay": 30.0,
}
