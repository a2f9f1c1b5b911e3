"""Utility modules for Polycle Member."""

from .datetime_utils import (
    get_local_tz,
    get_local_now,
    now_iso,
    get_week_start,
    get_week_end,
    get_weekday_code,
    report_date_by_29h_rule,
    get_report_local_date,
    parse_timestamp,
    parse_sheet_date,
)

from .team_utils import (
    normalize_slug,
    normalize_slug_candidate,
    resolve_user_slug,
    resolve_department,
)

from .retry import RetryExhausted, retry_with_backoff, with_retry, with_sheets_retry

__all__ = [
    # Datetime utilities
    "get_local_tz",
    "get_local_now",
    "now_iso",
    "get_week_start",
    "get_week_end",
    "get_weekday_code",
    "report_date_by_29h_rule",
    "get_report_local_date",
    "parse_timestamp",
    "parse_sheet_date",
    # Team utilities
    "normalize_slug",
    "normalize_slug_candidate",
    "resolve_user_slug",
    "resolve_department",
    # Retry
    "RetryExhausted",
    "retry_with_backoff",
    "with_retry",
    "with_sheets_retry",
]
