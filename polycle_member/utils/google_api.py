"""
Timeout guard for blocking gspread calls.

gspread talks to the Sheets API over requests, so each call runs in a worker
thread and is cancelled from the caller's side once it exceeds its budget.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from gspread.exceptions import APIError

logger = logging.getLogger(__name__)

# Seconds allowed for values.get and open_by_key
TIMEOUT_READ = 10.0
# Seconds allowed for values.update and values.append
TIMEOUT_WRITE = 15.0


class GoogleAPITimeoutError(Exception):
    """A Sheets call did not answer within its timeout."""
    pass


def _status_of(error: APIError) -> Optional[int]:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


async def execute_with_timeout(
    api_call: Callable,
    timeout: float = TIMEOUT_READ,
    operation: str = "Sheets call"
) -> Any:
    """
    Run a zero-argument gspread call in a thread, bounded by `timeout`.

    Example:
        await execute_with_timeout(
            lambda: spreadsheet.values_get("'yamamoto'!A:N"),
            TIMEOUT_READ,
            "Sheets.values.get(yamamoto)",
        )

    Raises GoogleAPITimeoutError on timeout. gspread errors propagate as-is;
    rate limits and server errors are logged as warnings, other API errors
    (missing tab, bad range) only at debug level.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(api_call),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        error_msg = f"{operation} timed out after {timeout}s"
        logger.error(error_msg)
        raise GoogleAPITimeoutError(error_msg)
    except APIError as e:
        status = _status_of(e)
        if status is not None and (status == 429 or status >= 500):
            logger.warning(f"{operation} failed with HTTP {status}: {e}")
        else:
            logger.debug(f"{operation} rejected (HTTP {status}): {e}")
        raise
