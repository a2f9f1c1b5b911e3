"""
Unit tests for DailyReportRepository.

Upsert by (date, user slug), at-most-once Slack delivery, and the merged
multi-tab read with de-duplication and filters.
"""

import pytest
from unittest.mock import AsyncMock

from polycle_member.integrations.slack import SlackPostResult
from polycle_member.models.api_validation import DailyReportQuery
from polycle_member.repositories.daily_reports import (
    DailyReportRepository,
    SaveDailyReportInput,
    find_row,
    map_row_to_report,
    parse_satisfaction_score,
    pick_preferred,
)
from polycle_member.repositories.exceptions import InvalidChannelError

HEADER = ["date", "satisfaction", "done", "good", "more", "todo", "wish", "news",
          "tags", "source", "slackTs", "createdAt", "updatedAt", "userSlug"]


def dr_row(date, satisfaction="", done="", tags="", source="web_form", slack_ts="",
           created_at="", updated_at="", user_slug="yamamoto"):
    return [date, satisfaction, done, "", "", "", "", "", tags, source, slack_ts,
            created_at, updated_at, user_slug]


@pytest.fixture
def repo(mock_sheets, mock_slack):
    return DailyReportRepository(
        sheets=mock_sheets, slack=mock_slack, spreadsheet_id="dr", channel_id="C0DR"
    )


def save_input(**overrides):
    data = dict(
        date="2026-10-19",
        user_slug="yamamoto",
        done_today="Shipped",
        channel_id="C0DR",
        satisfaction_today="8",
        tags=["release"],
        user_name="Taro",
        slack_user_access_token="xoxp-user",
    )
    data.update(overrides)
    return SaveDailyReportInput(**data)


class TestRowMapping:

    def test_map_row(self, sample_dr_values):
        report = map_row_to_report(sample_dr_values[1], "yamamoto")

        assert report.report_id == "dr_yamamoto_2026-10-19"
        assert report.weekday == "Mon"
        assert report.satisfaction_today == "8"
        assert report.tags == ["release"]
        assert report.source == "web_form"
        assert report.slack_ts is None

    def test_row_without_date_skipped(self):
        assert map_row_to_report(["", "8"], "yamamoto") is None

    def test_unknown_source_reads_as_manual(self):
        report = map_row_to_report(dr_row("2026-10-19", source="import"), "yamamoto")
        assert report.source == "manual"

    def test_missing_slug_column_uses_tab_owner(self):
        report = map_row_to_report(["2026-10-19", "5"], "Tanaka")
        assert report.user_slug == "tanaka"

    def test_find_row_numbers_from_two(self, sample_dr_values):
        rows = sample_dr_values[1:]

        match = find_row(rows, "2026-10-20", "YAMAMOTO")

        assert match.sheet_row_number == 3
        assert find_row(rows, "2026-10-21", "yamamoto") is None


class TestUpsert:

    @pytest.mark.asyncio
    async def test_appends_new_row(self, repo, mock_sheets, sample_report):
        mock_sheets.read_values.return_value = [HEADER]

        saved = await repo.upsert(sample_report)

        mock_sheets.update_values.assert_not_awaited()
        spreadsheet_id, range_a1, values = mock_sheets.append_values.await_args.args
        assert spreadsheet_id == "dr"
        assert range_a1 == "'yamamoto'!A:U"
        row = values[0]
        assert len(row) == 21
        assert row[0] == "2026-10-19"
        assert row[8] == "release export"
        assert row[13] == "yamamoto"
        assert row[14:] == [""] * 7
        assert saved.created_at and saved.updated_at

    @pytest.mark.asyncio
    async def test_updates_existing_row_in_place(self, repo, mock_sheets, sample_report, sample_dr_values):
        mock_sheets.read_values.return_value = sample_dr_values
        report = sample_report.model_copy(update={"date": "2026-10-20"})

        saved = await repo.upsert(report)

        mock_sheets.append_values.assert_not_awaited()
        _, range_a1, values = mock_sheets.update_values.await_args.args
        assert range_a1 == "'yamamoto'!A3:U3"
        # carried forward from the stored row
        assert saved.created_at == "2026-10-20T09:00:00.000Z"
        assert saved.slack_ts == "1718000000.000200"
        assert values[0][10] == "1718000000.000200"

    @pytest.mark.asyncio
    async def test_same_key_twice_never_duplicates(self, repo, mock_sheets, sample_report):
        rows = [HEADER]

        async def read(_sid, _range):
            return rows

        async def append(_sid, _range, values):
            rows.extend(values)
            return {}

        mock_sheets.read_values.side_effect = read
        mock_sheets.append_values.side_effect = append

        await repo.upsert(sample_report)
        await repo.upsert(sample_report.model_copy(update={"done_today": "Edited"}))

        assert mock_sheets.append_values.await_count == 1
        assert mock_sheets.update_values.await_count == 1
        assert mock_sheets.update_values.await_args.args[1] == "'yamamoto'!A2:U2"


class TestSave:

    @pytest.mark.asyncio
    async def test_first_save_posts_and_records_ts(self, repo, mock_sheets, mock_slack):
        stored = [HEADER, dr_row("2026-10-19", satisfaction="8", done="Shipped")]
        # get_slack_ts, upsert, set_slack_ts
        mock_sheets.read_values.side_effect = [[HEADER], [HEADER], stored]

        result = await repo.save(save_input())

        mock_slack.post_daily_report.assert_awaited_once()
        kwargs = mock_slack.post_daily_report.await_args.kwargs
        assert kwargs["channel_id"] == "C0DR"
        assert kwargs["user_access_token"] == "xoxp-user"
        mock_sheets.update_values.assert_awaited_once_with(
            "dr", "'yamamoto'!K2:K2", [["1718000000.000100"]]
        )
        assert result.report.slack_ts == "1718000000.000100"
        assert result.report.source == "web_form"
        assert result.slack.ok is True

    @pytest.mark.asyncio
    async def test_delivered_report_is_not_posted_again(self, repo, mock_sheets, mock_slack):
        mock_sheets.read_values.return_value = [
            HEADER,
            dr_row("2026-10-19", done="Shipped", slack_ts="1718000000.000100",
                   created_at="2026-10-19T09:00:00.000Z"),
        ]

        result = await repo.save(save_input(done_today="Shipped and fixed"))

        mock_slack.post_daily_report.assert_not_awaited()
        assert result.slack is None
        _, range_a1, values = mock_sheets.update_values.await_args.args
        assert range_a1 == "'yamamoto'!A2:U2"
        assert values[0][2] == "Shipped and fixed"
        assert values[0][10] == "1718000000.000100"
        assert values[0][11] == "2026-10-19T09:00:00.000Z"

    @pytest.mark.asyncio
    async def test_wrong_channel_rejected(self, repo, mock_sheets):
        with pytest.raises(InvalidChannelError):
            await repo.save(save_input(channel_id="C0OTHER"))

        mock_sheets.append_values.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_the_save(self, repo, mock_sheets, mock_slack):
        mock_sheets.read_values.return_value = [HEADER]
        mock_slack.post_daily_report.return_value = SlackPostResult(
            ok=False, used_token_type="bot", error="not_in_channel"
        )

        result = await repo.save(save_input())

        mock_sheets.append_values.assert_awaited_once()
        mock_sheets.update_values.assert_not_awaited()
        assert result.slack.ok is False
        assert result.report.slack_ts is None

    @pytest.mark.asyncio
    async def test_ts_write_failure_is_logged_not_raised(self, repo, mock_sheets, mock_slack):
        stored = [HEADER, dr_row("2026-10-19")]
        mock_sheets.read_values.side_effect = [[HEADER], [HEADER], stored]
        mock_sheets.update_values.side_effect = ConnectionError("reset")

        result = await repo.save(save_input())

        assert result.slack.ok is True

    @pytest.mark.asyncio
    async def test_set_slack_ts_missing_row(self, repo, mock_sheets):
        mock_sheets.read_values.return_value = [HEADER]

        assert await repo.set_slack_ts("yamamoto", "2026-10-19", "1.2") is False
        mock_sheets.update_values.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save_from_slack_records_message_ts(self, repo, mock_sheets, mock_slack):
        mock_sheets.read_values.return_value = [HEADER]

        saved = await repo.save_from_slack(
            {"done": "・Shipped", "satisfaction": "9"},
            user_slug="murakami",
            date="2026-10-19",
            slack_ts="1718000000.000900",
            channel_id="C0DR",
            slack_user_id="U09HVFPNX1P",
        )

        mock_slack.post_daily_report.assert_not_awaited()
        _, range_a1, values = mock_sheets.append_values.await_args.args
        assert range_a1 == "'murakami'!A:U"
        assert values[0][9] == "slack_ingest"
        assert values[0][10] == "1718000000.000900"
        assert saved.done_today == "・Shipped"

    @pytest.mark.asyncio
    async def test_save_from_slack_leaves_web_form_row_alone(self, repo, mock_sheets):
        mock_sheets.read_values.return_value = [
            HEADER,
            dr_row("2026-10-19", satisfaction="8", done="Shipped", tags="release",
                   source="web_form", user_slug="murakami"),
        ]

        saved = await repo.save_from_slack(
            {"done": "・Shipped", "satisfaction": "8"},
            user_slug="murakami",
            date="2026-10-19",
            slack_ts="1718000000.000900",
        )

        assert saved is None
        mock_sheets.update_values.assert_not_awaited()
        mock_sheets.append_values.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save_from_slack_same_message_twice(self, repo, mock_sheets):
        mock_sheets.read_values.return_value = [
            HEADER,
            dr_row("2026-10-19", done="・Shipped", source="slack_ingest",
                   slack_ts="1718000000.000900", user_slug="murakami"),
        ]

        saved = await repo.save_from_slack(
            {"done": "・Shipped again"},
            user_slug="murakami",
            date="2026-10-19",
            slack_ts="1718000000.000900",
        )

        assert saved is None
        mock_sheets.update_values.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save_from_slack_replaces_earlier_ingest(self, repo, mock_sheets):
        mock_sheets.read_values.return_value = [
            HEADER,
            dr_row("2026-10-19", done="・Draft", source="slack_ingest",
                   slack_ts="1718000000.000100", user_slug="murakami"),
        ]

        saved = await repo.save_from_slack(
            {"done": "・Final"},
            user_slug="murakami",
            date="2026-10-19",
            slack_ts="1718000000.000900",
        )

        assert saved.done_today == "・Final"
        _, range_a1, values = mock_sheets.update_values.await_args.args
        assert range_a1 == "'murakami'!A2:U2"
        assert values[0][10] == "1718000000.000900"


class TestFetch:

    @pytest.fixture
    def tabs(self, mock_sheets):
        tabs = {
            "'yamamoto'!A:N": [
                HEADER,
                dr_row("2026-10-19", satisfaction="8", done="Shipped export", tags="Release",
                       updated_at="2026-10-19T09:00:00.000Z"),
                dr_row("2026-10-20", satisfaction="7", done="Reviewed"),
                dr_row("", done="stray row"),
                dr_row("2026-10-12", satisfaction="3", done="Last week"),
            ],
            "'tanaka'!A:N": [
                HEADER,
                dr_row("2026-10-19", satisfaction="9/10", done="Planning", user_slug="tanaka"),
                dr_row("2026-10-21", satisfaction="great", done="Demo", user_slug="tanaka"),
            ],
            # A copy of yamamoto's report that was edited later
            "'murakami'!A:N": [
                HEADER,
                dr_row("2026-10-19", satisfaction="8", done="Shipped export (edited)",
                       tags="release", updated_at="2026-10-19T10:00:00.000Z"),
            ],
        }

        async def read(_sid, range_a1):
            return tabs.get(range_a1, [])

        mock_sheets.read_values.side_effect = read
        return tabs

    @pytest.mark.asyncio
    async def test_merges_tabs_and_filters_week(self, repo, tabs):
        reports = await repo.fetch(DailyReportQuery(week_start="2026-10-19"))

        ids = sorted(r.report_id for r in reports)
        assert ids == [
            "dr_tanaka_2026-10-19",
            "dr_tanaka_2026-10-21",
            "dr_yamamoto_2026-10-19",
            "dr_yamamoto_2026-10-20",
        ]

    @pytest.mark.asyncio
    async def test_duplicate_keeps_latest_update(self, repo, tabs):
        reports = await repo.fetch(DailyReportQuery(week_start="2026-10-19"))

        report = next(r for r in reports if r.report_id == "dr_yamamoto_2026-10-19")
        assert report.done_today == "Shipped export (edited)"

    @pytest.mark.asyncio
    async def test_search_and_tags(self, repo, tabs):
        by_text = await repo.fetch(DailyReportQuery(week_start="2026-10-19", search_term="DEMO"))
        by_tag = await repo.fetch(DailyReportQuery(week_start="2026-10-19", tags=["RELEASE"]))

        assert [r.report_id for r in by_text] == ["dr_tanaka_2026-10-21"]
        assert [r.report_id for r in by_tag] == ["dr_yamamoto_2026-10-19"]

    @pytest.mark.asyncio
    async def test_single_user(self, repo, tabs, mock_sheets):
        reports = await repo.fetch(DailyReportQuery(user_slug="tanaka", week_start="2026-10-19"))

        assert {r.user_slug for r in reports} == {"tanaka"}
        assert mock_sheets.read_values.await_count == 1

    @pytest.mark.asyncio
    async def test_list_newest_first(self, repo, tabs):
        reports = await repo.list(DailyReportQuery(user_slug="yamamoto", week_start="2026-10-19"))

        assert [r.date for r in reports] == ["2026-10-20", "2026-10-19"]

    @pytest.mark.asyncio
    async def test_weekly_satisfaction(self, repo, tabs):
        points = await repo.compute_weekly_satisfaction(DailyReportQuery(week_start="2026-10-19"))

        by_user = {(p.scope, p.user_slug): p for p in points}
        yamamoto = by_user[("individual", "yamamoto")]
        assert yamamoto.average_score == 7.5
        assert yamamoto.sample_size == 2
        assert yamamoto.department == "A"
        assert by_user[("department", "dept:A")].average_score == 7.5
        assert by_user[("department", "dept:B")].average_score == 9.0
        company = by_user[("company", "company")]
        assert company.average_score == 8.0
        assert company.sample_size == 3
        assert company.department == "all"


class TestDateCells:
    """Date cells read unformatted: serial day numbers and stray text."""

    @pytest.fixture
    def serial_tab(self, mock_sheets):
        mock_sheets.read_values.return_value = [
            HEADER,
            dr_row("2026-10-19", satisfaction="8", done="Shipped"),
            dr_row(46315, satisfaction="6", done="Typed into the sheet"),
            dr_row("next week", satisfaction="1", done="Not a report"),
        ]
        return mock_sheets

    def test_serial_date_mapped(self):
        report = map_row_to_report(dr_row("46315", done="Typed"), "yamamoto")

        assert report.date == "2026-10-20"
        assert report.report_id == "dr_yamamoto_2026-10-20"
        assert report.weekday == "Tue"

    def test_unreadable_date_skipped(self):
        assert map_row_to_report(dr_row("next week", done="?"), "yamamoto") is None

    @pytest.mark.asyncio
    async def test_list_skips_unreadable_rows(self, repo, serial_tab):
        reports = await repo.list(DailyReportQuery(user_slug="yamamoto", week_start="2026-10-19"))

        assert [r.date for r in reports] == ["2026-10-20", "2026-10-19"]

    @pytest.mark.asyncio
    async def test_upsert_updates_serial_row_in_place(self, repo, serial_tab, sample_report):
        report = sample_report.model_copy(update={"date": "2026-10-20", "report_id": ""})

        await repo.upsert(report)

        serial_tab.append_values.assert_not_awaited()
        _, range_a1, values = serial_tab.update_values.await_args.args
        assert range_a1 == "'yamamoto'!A3:U3"
        assert values[0][0] == "2026-10-20"

    @pytest.mark.asyncio
    async def test_weekly_satisfaction_with_serial_dates(self, repo, serial_tab):
        points = await repo.compute_weekly_satisfaction(
            DailyReportQuery(user_slug="yamamoto", week_start="2026-10-19")
        )

        individual = next(p for p in points if p.scope == "individual")
        assert individual.week_start == "2026-10-19"
        assert individual.average_score == 7.0
        assert individual.sample_size == 2


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        ("8", 8.0),
        ("7.5 / 10", 7.5),
        ("満足度 -1", -1.0),
        ("great", None),
        ("", None),
    ])
    def test_parse_satisfaction_score(self, value, expected):
        assert parse_satisfaction_score(value) == expected

    def test_pick_preferred_tie_prefers_delivered(self):
        plain = map_row_to_report(dr_row("2026-10-19"), "yamamoto")
        delivered = map_row_to_report(dr_row("2026-10-19", slack_ts="1.2"), "yamamoto")

        assert pick_preferred(plain, delivered) is delivered
        assert pick_preferred(delivered, plain) is delivered

    def test_pick_preferred_timestamp_wins_over_ts(self):
        older = map_row_to_report(
            dr_row("2026-10-19", slack_ts="1.2", updated_at="2026-10-19T09:00:00Z"), "yamamoto"
        )
        newer = map_row_to_report(
            dr_row("2026-10-19", updated_at="2026-10-19T10:00:00Z"), "yamamoto"
        )

        assert pick_preferred(older, newer) is newer
