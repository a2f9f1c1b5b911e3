"""
Tests for polycle_member/utils/google_api.py

- Slow calls raise GoogleAPITimeoutError
- Rate limits logged as warnings, other API errors kept quiet
"""

import logging
import time

import pytest
from unittest.mock import MagicMock

from gspread.exceptions import APIError

from polycle_member.utils.google_api import GoogleAPITimeoutError, execute_with_timeout


def make_api_error(code: int, message: str) -> APIError:
    response = MagicMock()
    response.status_code = code
    response.text = message
    response.json.return_value = {
        "error": {"code": code, "message": message, "status": "ERROR"}
    }
    return APIError(response)


@pytest.mark.asyncio
async def test_returns_call_result():
    result = await execute_with_timeout(lambda: {"values": [["a"]]}, 1.0, "read")

    assert result == {"values": [["a"]]}


@pytest.mark.asyncio
async def test_slow_call_times_out():
    with pytest.raises(GoogleAPITimeoutError, match="Sheets.values.get timed out"):
        await execute_with_timeout(lambda: time.sleep(0.5), 0.05, "Sheets.values.get")


@pytest.mark.asyncio
async def test_rate_limit_logged_as_warning(caplog):
    error = make_api_error(429, "Quota exceeded")

    def call():
        raise error

    with caplog.at_level(logging.DEBUG, logger="polycle_member.utils.google_api"):
        with pytest.raises(APIError):
            await execute_with_timeout(call, 1.0, "Sheets.values.append")

    record = [r for r in caplog.records if r.name == "polycle_member.utils.google_api"][-1]
    assert record.levelno == logging.WARNING
    assert "HTTP 429" in record.getMessage()


@pytest.mark.asyncio
async def test_bad_range_logged_at_debug(caplog):
    error = make_api_error(400, "Unable to parse range: 'nobody'!A:N")

    def call():
        raise error

    with caplog.at_level(logging.DEBUG, logger="polycle_member.utils.google_api"):
        with pytest.raises(APIError):
            await execute_with_timeout(call, 1.0, "Sheets.values.get")

    records = [r for r in caplog.records if r.name == "polycle_member.utils.google_api"]
    assert records
    assert all(r.levelno == logging.DEBUG for r in records)
