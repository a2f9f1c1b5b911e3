"""
Tests for polycle_member/utils/datetime_utils.py

Week boundaries, weekday codes and the 29 hour report day, all in the team
timezone (Asia/Taipei, UTC+8).
"""

import pytest
from datetime import datetime, timezone
import pytz

from polycle_member.utils.datetime_utils import (
    get_local_tz,
    get_week_end,
    get_week_start,
    get_weekday_code,
    now_iso,
    parse_timestamp,
    report_date_by_29h_rule,
    get_report_local_date,
    parse_sheet_date,
    slack_ts_to_datetime,
)

TZ = "Asia/Taipei"


class TestGetLocalTz:

    def test_returns_named_timezone(self):
        tz = get_local_tz(TZ)
        assert isinstance(tz, pytz.BaseTzInfo)
        assert tz.zone == TZ


class TestWeekBoundaries:

    def test_monday_is_its_own_week_start(self):
        assert get_week_start("2026-10-19", TZ) == "2026-10-19"

    def test_sunday_belongs_to_week_started_on_monday(self):
        assert get_week_start("2026-10-25", TZ) == "2026-10-19"

    def test_plain_date_is_not_shifted_by_timezone(self):
        assert get_week_start("2026-10-18", TZ) == "2026-10-12"

    def test_datetime_converted_to_local_first(self):
        # Sunday 20:00 UTC is Monday 04:00 in Taipei
        value = datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc)
        assert get_week_start(value, TZ) == "2026-10-19"

    def test_timestamp_string_converted_to_local_first(self):
        assert get_week_start("2026-10-18T20:00:00Z", TZ) == "2026-10-19"

    def test_week_end_is_six_days_later(self):
        assert get_week_end("2026-10-19") == "2026-10-25"
        assert get_week_end("2026-12-28") == "2027-01-03"


class TestWeekdayCode:

    @pytest.mark.parametrize("value,expected", [
        ("2026-10-19", "Mon"),
        ("2026-10-21", "Wed"),
        ("2026-10-25", "Sun"),
    ])
    def test_codes(self, value, expected):
        assert get_weekday_code(value, TZ) == expected


class TestReportDateBy29hRule:

    def test_before_five_am_is_previous_day(self):
        now = datetime(2026, 10, 20, 2, 30)
        assert report_date_by_29h_rule(now, TZ) == ("2026-10-19", True)

    def test_from_five_am_is_same_day(self):
        now = datetime(2026, 10, 20, 5, 0)
        assert report_date_by_29h_rule(now, TZ) == ("2026-10-20", False)

    def test_late_evening_is_same_day(self):
        now = datetime(2026, 10, 20, 23, 59)
        assert report_date_by_29h_rule(now, TZ) == ("2026-10-20", False)

    def test_aware_datetime_converted_to_local(self):
        # 20:00 UTC is 04:00 the next day in Taipei
        now = datetime(2026, 10, 19, 20, 0, tzinfo=timezone.utc)
        assert report_date_by_29h_rule(now, TZ) == ("2026-10-19", True)

    def test_get_report_local_date(self):
        assert get_report_local_date(datetime(2026, 10, 20, 4, 59), TZ) == "2026-10-19"


class TestParseTimestamp:

    def test_iso_with_z(self):
        expected = datetime(2026, 10, 19, tzinfo=timezone.utc).timestamp() * 1000
        assert parse_timestamp("2026-10-19T00:00:00.000Z") == expected

    def test_naive_read_as_utc(self):
        expected = datetime(2026, 10, 19, 12, tzinfo=timezone.utc).timestamp() * 1000
        assert parse_timestamp("2026-10-19T12:00:00") == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date"])
    def test_unparseable_is_none(self, value):
        assert parse_timestamp(value) is None


def test_now_iso_format():
    value = now_iso()
    assert value.endswith("Z")
    assert len(value) == len("2026-10-19T00:00:00.000Z")
    assert parse_timestamp(value) is not None


def test_slack_ts_to_datetime():
    value = slack_ts_to_datetime("1700000000.000100")
    assert value.tzinfo is not None
    assert int(value.timestamp()) == 1700000000


class TestParseSheetDate:

    @pytest.mark.parametrize("value,expected", [
        ("2026-10-19", "2026-10-19"),
        ("46314", "2026-10-19"),
        (46315, "2026-10-20"),
        (46314.75, "2026-10-19"),
        ("2026-10-19T18:00:00.000Z", "2026-10-20"),
    ])
    def test_dates(self, value, expected):
        assert parse_sheet_date(value) == expected

    @pytest.mark.parametrize("value", [
        None, "", "   ", True, "next week", "2026/10/19", "0", "-3", "99999999",
    ])
    def test_not_a_date(self, value):
        assert parse_sheet_date(value) is None
