"""
Retry logic with exponential backoff.

Wraps Google Sheets calls so transient failures are retried a bounded number
of times. Slack retries are left to slack_sdk's retry handlers.
"""

import logging
import asyncio
import functools
import random
from typing import Callable, Type, Tuple, Optional, Any, Dict

from config import settings

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float,
) -> float:
    """Delay before retrying after the given zero-based attempt."""
    return min(base_delay * (exponential_base ** attempt), max_delay)


async def retry_with_backoff(
    func: Callable,
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
    skip_on: Tuple[Type[Exception], ...] = (),
    retry_if: Optional[Callable[[Exception], bool]] = None,
    **kwargs
) -> Any:
    """
    Execute a function with exponential backoff retry logic.

    Args:
        func: Sync or async function to execute
        *args: Positional arguments for func
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Initial delay in seconds
        max_delay: Cap for any single delay in seconds
        exponential_base: Multiplicative factor between delays
        jitter: Scale each delay by a random factor in [0.5, 1.5)
        retry_on: Exception types that may be retried
        skip_on: Exception types that are never retried (raised immediately)
        retry_if: Optional predicate; a retry_on exception it rejects is raised immediately
        **kwargs: Keyword arguments for func

    Returns:
        Result of func execution

    Raises:
        RetryExhausted: If all attempts fail with a retryable error
        Exception: Non-retryable errors, unchanged

    Example:
        values = await retry_with_backoff(
            read_range,
            "tasks!A:V",
            max_retries=3,
            base_delay=0.4,
            retry_if=is_transient_error,
        )
    """
    last_exception = None
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_retries + 1):
        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)

            if attempt > 0:
                logger.info(
                    f"Retry successful on attempt {attempt + 1}/{max_retries + 1} for {name}"
                )

            return result

        except skip_on as e:
            logger.warning(f"Skipping retry for {name}: {type(e).__name__}: {e}")
            raise

        except retry_on as e:
            if retry_if is not None and not retry_if(e):
                logger.warning(f"Not retrying {name}: {type(e).__name__}: {e}")
                raise

            last_exception = e

            if attempt == max_retries:
                logger.error(f"All {max_retries + 1} retry attempts exhausted for {name}")
                raise RetryExhausted(
                    f"Failed after {max_retries + 1} attempts: {type(e).__name__}: {e}"
                ) from e

            delay = compute_delay(attempt, base_delay, max_delay, exponential_base)
            if jitter:
                delay = delay * (0.5 + random.random())

            logger.warning(
                f"Retry attempt {attempt + 1}/{max_retries + 1} for {name} "
                f"after {type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )

            await asyncio.sleep(delay)

    raise RetryExhausted(f"Failed after {max_retries + 1} attempts") from last_exception


def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
    skip_on: Tuple[Type[Exception], ...] = (),
    retry_if: Optional[Callable[[Exception], bool]] = None,
):
    """
    Decorator to add retry logic with exponential backoff to async functions.

    Usage:
        @with_retry(max_retries=5, base_delay=2.0, retry_on=(ConnectionError,))
        async def open_spreadsheet(key: str):
            ...
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_with_backoff(
                func,
                *args,
                max_retries=max_retries,
                base_delay=base_delay,
                max_delay=max_delay,
                exponential_base=exponential_base,
                jitter=jitter,
                retry_on=retry_on,
                skip_on=skip_on,
                retry_if=retry_if,
                **kwargs
            )
        return wrapper
    return decorator


def sheets_retry_config() -> Dict[str, Any]:
    """Retry configuration for Google Sheets calls, read from settings."""
    return {
        "max_retries": settings.sheets_retries,
        "base_delay": settings.sheets_retry_base_delay,
        "max_delay": settings.sheets_retry_max_delay,
        "exponential_base": settings.sheets_retry_factor,
        "jitter": False,
    }


def with_sheets_retry(retry_if: Optional[Callable[[Exception], bool]] = None):
    """
    Decorator applying the Sheets retry preset.

    The preset is read from settings on every call, so SHEETS_RETRY_* changes
    apply without re-importing.
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            retrying = with_retry(retry_if=retry_if, **sheets_retry_config())(func)
            return await retrying(*args, **kwargs)
        return wrapper
    return decorator
