"""
Centralized date and timezone utilities.

Report dates, week boundaries and weekday codes are all computed in the
configured team timezone.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Tuple, Union
import pytz

from config import settings

WEEKDAY_CODES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

# Reports written before this local hour belong to the previous day
REPORT_DAY_CUTOFF_HOUR = 5

DateLike = Union[str, date, datetime]

# Day 0 of Google Sheets date serial numbers
SHEETS_EPOCH = date(1899, 12, 30)
MAX_SHEETS_SERIAL = 2958465  # 9999-12-31


def get_local_tz(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    """Get the configured local timezone."""
    return pytz.timezone(tz_name or settings.default_timezone)


def get_local_now(tz_name: Optional[str] = None) -> datetime:
    """Get current time in local timezone (aware)."""
    return datetime.now(get_local_tz(tz_name))


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def to_local_date(value: DateLike, tz_name: Optional[str] = None) -> date:
    """
    Resolve a date-like value to a calendar date in the local timezone.

    Plain dates ("2026-10-19" or date objects) are taken as-is. Datetimes and
    timestamp strings are converted to local time first; naive datetimes are
    assumed to already be local.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(get_local_tz(tz_name)).date()

    if isinstance(value, date):
        return value

    text = value.strip()
    if len(text) == 10:
        return date.fromisoformat(text)

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    return to_local_date(parsed, tz_name)


def parse_sheet_date(value: Any) -> Optional[str]:
    """
    ISO date from a date cell, or None when the cell is not a date.

    Cells are read unformatted, so a date typed into the sheet arrives as a
    serial day number ("46314" -> "2026-10-19"). ISO dates and timestamps are
    accepted as text.
    """
    if value is None or isinstance(value, bool):
        return None

    text = str(value).strip()
    if not text:
        return None

    try:
        serial = float(text)
    except ValueError:
        serial = None

    if serial is not None:
        if not 1 <= serial <= MAX_SHEETS_SERIAL:
            return None
        return (SHEETS_EPOCH + timedelta(days=int(serial))).isoformat()

    try:
        return to_local_date(text).isoformat()
    except ValueError:
        return None


def get_week_start(value: DateLike, tz_name: Optional[str] = None) -> str:
    """ISO date of the Monday that starts the week containing value."""
    day = to_local_date(value, tz_name)
    return (day - timedelta(days=day.weekday())).isoformat()


def get_week_end(week_start: str) -> str:
    """ISO date six days after week_start."""
    return (date.fromisoformat(week_start) + timedelta(days=6)).isoformat()


def get_weekday_code(value: DateLike, tz_name: Optional[str] = None) -> str:
    """Three-letter English weekday code (Mon..Sun)."""
    return WEEKDAY_CODES[to_local_date(value, tz_name).weekday()]


def report_date_by_29h_rule(
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> Tuple[str, bool]:
    """
    Date a report belongs to.

    The reporting day runs until 05:00 the next morning (a "29 hour" day), so a
    report submitted at 02:00 counts for the previous date.

    Returns:
        (date_iso, is_previous_day)
    """
    local_tz = get_local_tz(tz_name)
    if now is None:
        zoned = datetime.now(local_tz)
    elif now.tzinfo is None:
        zoned = local_tz.localize(now)
    else:
        zoned = now.astimezone(local_tz)

    is_previous_day = zoned.hour < REPORT_DAY_CUTOFF_HOUR
    target = zoned.date() - timedelta(days=1) if is_previous_day else zoned.date()
    return target.isoformat(), is_previous_day


def get_report_local_date(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> str:
    """Report date for now under the 29 hour rule."""
    return report_date_by_29h_rule(now, tz_name)[0]


def parse_timestamp(value: Optional[str]) -> Optional[float]:
    """
    Parse an ISO date or timestamp into epoch milliseconds.

    Returns None for blanks and unparseable input. Naive values are read as UTC.
    """
    if not value:
        return None

    text = str(value).strip()
    if not text:
        return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


def slack_ts_to_datetime(ts: str) -> datetime:
    """Convert a Slack message ts ("1718000000.123456") to an aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)
