"""
Daily report repository.

Each member has a tab in the DR spreadsheet named after their user slug. A
row is one report; the natural key is (date, user slug). Saving upserts the
row and then posts the report to Slack once, recording the message ts in
column K so later saves do not post again.

Row layout:
    A date | B satisfaction | C done | D good/more background | E more next
    F todo tomorrow | G wish tomorrow | H personal news | I tags
    J source | K slackTs | L createdAt | M updatedAt | N userSlug
    O-U reserved
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import settings
from config.team import get_team_slugs
from ..integrations.sheets import (
    GoogleSheetsIntegration,
    get_sheets_integration,
    escape_sheet_name,
    safe_string,
    split_sheet_values,
)
from ..integrations.slack import (
    SlackIntegration,
    SlackPostResult,
    get_slack_integration,
    usable_user_token,
)
from ..models.api_validation import DailyReportQuery
from ..models.daily_report import (
    DailyReport,
    DailyReportSource,
    SatisfactionScope,
    WeeklySatisfactionPoint,
)
from ..utils.datetime_utils import (
    get_local_now,
    get_week_end,
    get_week_start,
    get_weekday_code,
    now_iso,
    parse_sheet_date,
    parse_timestamp,
)
from ..utils.team_utils import normalize_slug, resolve_department, resolve_user_slug
from .exceptions import InvalidChannelError

logger = logging.getLogger(__name__)

READ_COLUMNS = "A:N"
WRITE_COLUMNS = "A:U"
RESERVED_COLUMNS = 7  # O-U

COL_DATE = 0
COL_TAGS = 8
COL_SOURCE = 9
COL_SLACK_TS = 10
COL_CREATED_AT = 11
COL_UPDATED_AT = 12
COL_USER_SLUG = 13

_SCORE_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass
class RowMatch:
    """A data row and its 1-based sheet row number."""
    sheet_row_number: int
    row: List[str]


@dataclass
class SaveDailyReportInput:
    """Everything needed to save a report submitted from the web form."""
    date: str
    user_slug: str
    done_today: str
    channel_id: str
    satisfaction_today: str = ""
    good_more_background: str = ""
    more_next: str = ""
    todo_tomorrow: str = ""
    wish_tomorrow: str = ""
    personal_news: str = ""
    tags: List[str] = field(default_factory=list)
    user_name: str = ""
    email: str = ""
    slack_user_id: str = ""
    slack_team_id: str = ""
    slack_user_access_token: Optional[str] = None


@dataclass
class SaveDailyReportResult:
    report: DailyReport
    slack: Optional[SlackPostResult] = None


def report_id_for(user_slug: str, date: str) -> str:
    return f"dr_{normalize_slug(user_slug)}_{date}"


def parse_satisfaction_score(value: Optional[str]) -> Optional[float]:
    """First number in the satisfaction text ("8/10 good day" -> 8.0)."""
    if not value:
        return None
    match = _SCORE_PATTERN.search(value)
    if not match:
        return None
    return float(match.group(0))


def _cell(row: List[Any], index: int) -> str:
    return safe_string(row[index]) if index < len(row) else ""


def parse_tags_cell(value: str) -> List[str]:
    tags = []
    for raw in (value or "").split():
        tag = raw.lstrip("#").strip()
        if tag:
            tags.append(tag)
    return tags


def map_row_to_report(row: List[Any], user_slug: str) -> Optional[DailyReport]:
    """
    Build a report from a sheet row.

    Rows without a date are skipped, and so are rows whose date cell cannot be
    read as a date (logged).
    """
    raw_date = _cell(row, COL_DATE)
    if not raw_date:
        return None

    date = parse_sheet_date(raw_date)
    if not date:
        logger.warning(f"Skipping row in {user_slug}: unreadable date {raw_date!r}")
        return None

    slug = normalize_slug(_cell(row, COL_USER_SLUG) or user_slug)
    source_cell = _cell(row, COL_SOURCE)
    source = (
        source_cell
        if source_cell in {s.value for s in DailyReportSource}
        else DailyReportSource.MANUAL
    )

    return DailyReport(
        report_id=report_id_for(slug, date),
        date=date,
        weekday=get_weekday_code(date),
        user_slug=slug,
        user_name=slug,
        satisfaction_today=_cell(row, 1),
        done_today=_cell(row, 2),
        good_more_background=_cell(row, 3),
        more_next=_cell(row, 4),
        todo_tomorrow=_cell(row, 5),
        wish_tomorrow=_cell(row, 6),
        personal_news=_cell(row, 7),
        tags=parse_tags_cell(_cell(row, COL_TAGS)),
        source=source,
        slack_ts=_cell(row, COL_SLACK_TS) or None,
        created_at=_cell(row, COL_CREATED_AT),
        updated_at=_cell(row, COL_UPDATED_AT),
    )


def report_to_row(report: DailyReport) -> List[str]:
    base = [
        report.date,
        report.satisfaction_today or "",
        report.done_today or "",
        report.good_more_background or "",
        report.more_next or "",
        report.todo_tomorrow or "",
        report.wish_tomorrow or "",
        report.personal_news or "",
        " ".join(tag.strip() for tag in report.tags if tag.strip()),
        report.source or DailyReportSource.MANUAL.value,
        report.slack_ts or "",
        report.created_at or "",
        report.updated_at or "",
        report.user_slug or "",
    ]
    return base + [""] * RESERVED_COLUMNS


def find_row(rows: List[List[Any]], date: str, user_slug: str) -> Optional[RowMatch]:
    """
    Linear scan for the row holding (date, user_slug).

    Rows written before column N existed have no slug; they belong to the
    tab's owner.
    """
    target = normalize_slug(user_slug)
    for index, row in enumerate(rows):
        row_slug = _cell(row, COL_USER_SLUG) or user_slug
        if parse_sheet_date(_cell(row, COL_DATE)) == date and normalize_slug(row_slug) == target:
            return RowMatch(sheet_row_number=index + 2, row=[safe_string(c) for c in row])
    return None


def _report_timestamp(report: DailyReport) -> Optional[float]:
    updated = parse_timestamp(report.updated_at)
    return updated if updated is not None else parse_timestamp(report.created_at)


def pick_preferred(existing: DailyReport, candidate: DailyReport) -> DailyReport:
    """
    Choose between two copies of the same report.

    The later updatedAt (or createdAt) wins; on a tie the copy that has been
    delivered to Slack wins; otherwise the first one seen is kept.
    """
    existing_ts = _report_timestamp(existing)
    candidate_ts = _report_timestamp(candidate)

    if existing_ts is not None and candidate_ts is not None:
        if candidate_ts > existing_ts:
            return candidate
        if candidate_ts < existing_ts:
            return existing
    elif candidate_ts is not None:
        return candidate
    elif existing_ts is not None:
        return existing

    if candidate.slack_ts and not existing.slack_ts:
        return candidate
    return existing


class DailyReportRepository:
    """Repository for daily reports stored in Google Sheets."""

    def __init__(
        self,
        sheets: Optional[GoogleSheetsIntegration] = None,
        slack: Optional[SlackIntegration] = None,
        spreadsheet_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ):
        self.sheets = sheets or get_sheets_integration()
        self.slack = slack or get_slack_integration()
        self.spreadsheet_id = spreadsheet_id if spreadsheet_id is not None else settings.sheets_dr_spreadsheet_id
        self.channel_id = (
            channel_id if channel_id is not None else settings.slack_daily_report_channel_id
        ).strip()

    # ==================== SHEET ACCESS ====================

    async def read_sheet(self, user_slug: str) -> List[List[Any]]:
        """All values of a member's tab (header included); [] if the tab is missing."""
        range_a1 = f"{escape_sheet_name(user_slug)}!{READ_COLUMNS}"
        return await self.sheets.read_values(self.spreadsheet_id, range_a1)

    async def find_row(self, user_slug: str, date: str) -> Optional[RowMatch]:
        values = await self.read_sheet(user_slug)
        return find_row(split_sheet_values(values)["rows"], date, user_slug)

    async def upsert(self, report: DailyReport) -> DailyReport:
        """
        Write a report, updating its row in place or appending a new one.

        createdAt and slackTs are carried forward from the stored row when
        the incoming report does not set them.

        Returns:
            The report as written
        """
        slug = normalize_slug(report.user_slug)
        match = await self.find_row(slug, report.date)

        now = now_iso()
        existing_created_at = _cell(match.row, COL_CREATED_AT) if match else ""
        existing_slack_ts = _cell(match.row, COL_SLACK_TS) if match else ""

        normalized = report.model_copy(update={
            "report_id": report.report_id or report_id_for(slug, report.date),
            "weekday": get_weekday_code(report.date),
            "user_slug": slug,
            "user_name": report.user_name or slug,
            "source": report.source or DailyReportSource.MANUAL.value,
            "tags": list(report.tags or []),
            "created_at": report.created_at or existing_created_at or now,
            "updated_at": report.updated_at or now,
            "slack_ts": report.slack_ts or existing_slack_ts or None,
        })
        payload = [report_to_row(normalized)]
        sheet = escape_sheet_name(slug)

        if match:
            row_number = match.sheet_row_number
            await self.sheets.update_values(
                self.spreadsheet_id, f"{sheet}!A{row_number}:U{row_number}", payload
            )
            logger.info(f"Updated daily report {normalized.report_id} in row {row_number}")
        else:
            await self.sheets.append_values(
                self.spreadsheet_id, f"{sheet}!{WRITE_COLUMNS}", payload
            )
            logger.info(f"Appended daily report {normalized.report_id}")

        return normalized

    async def get_slack_ts(self, user_slug: str, date: str) -> Optional[str]:
        """Recorded Slack message ts for a report, if it has been delivered."""
        match = await self.find_row(user_slug, date)
        if not match:
            return None
        return _cell(match.row, COL_SLACK_TS) or None

    async def set_slack_ts(self, user_slug: str, date: str, slack_ts: str) -> bool:
        """Record the Slack ts in column K. Returns False when the row is missing."""
        match = await self.find_row(user_slug, date)
        if not match:
            logger.warning(f"Cannot record Slack ts: no row for {user_slug} on {date}")
            return False

        row_number = match.sheet_row_number
        range_a1 = f"{escape_sheet_name(normalize_slug(user_slug))}!K{row_number}:K{row_number}"
        await self.sheets.update_values(self.spreadsheet_id, range_a1, [[slack_ts]])
        return True

    # ==================== QUERIES ====================

    async def _read_reports(self, user_slug: str) -> List[DailyReport]:
        values = await self.read_sheet(user_slug)
        reports = []
        for row in split_sheet_values(values)["rows"]:
            report = map_row_to_report(row, user_slug)
            if report:
                reports.append(report)
        return reports

    async def fetch(self, options: Optional[DailyReportQuery] = None) -> List[DailyReport]:
        """
        Reports matching the query; member tabs are read concurrently.

        Defaults to the current week. Without a user slug every configured
        team member's tab is read.
        """
        options = options or DailyReportQuery()
        week_start = options.week_start or get_week_start(get_local_now())
        week_end = options.week_end or get_week_end(week_start)

        target_slugs = [options.user_slug] if options.user_slug else get_team_slugs()
        compiled = await asyncio.gather(*(self._read_reports(slug) for slug in target_slugs))

        deduplicated: Dict[str, DailyReport] = {}
        for reports in compiled:
            for report in reports:
                key = report.report_id.strip()
                if not key:
                    continue
                existing = deduplicated.get(key)
                deduplicated[key] = pick_preferred(existing, report) if existing else report

        search = (options.search_term or "").lower()
        wanted_tags = [tag.lower() for tag in options.tags]
        wanted_slug = normalize_slug(options.user_slug) if options.user_slug else None

        results = []
        for report in deduplicated.values():
            if not (week_start <= report.date <= week_end):
                continue
            if wanted_slug and normalize_slug(report.user_slug) != wanted_slug:
                continue
            if search and search not in " ".join(report.content_fields()).lower():
                continue
            if wanted_tags:
                report_tags = [tag.lower() for tag in report.tags]
                if not all(tag in report_tags for tag in wanted_tags):
                    continue
            results.append(report)

        return results

    async def list(self, options: Optional[DailyReportQuery] = None) -> List[DailyReport]:
        """Reports for display, newest date first."""
        reports = await self.fetch(options)
        return sorted(reports, key=lambda r: (r.date, r.user_slug), reverse=True)

    # ==================== SAVE ====================

    async def _deliver(
        self,
        report: DailyReport,
        user_access_token: Optional[str],
    ) -> SlackPostResult:
        result = await self.slack.post_daily_report(
            report,
            channel_id=self.channel_id,
            user_access_token=usable_user_token(user_access_token),
            allow_bot_fallback=True,
        )

        if not result.ok or not result.ts:
            logger.error(
                f"Daily report {report.report_id} saved but not delivered to Slack: "
                f"{result.error} (token={result.used_token_type}, needed={result.needed})"
            )
            return result

        try:
            await self.set_slack_ts(report.user_slug, report.date, result.ts)
        except Exception as e:
            logger.error(
                f"Posted {report.report_id} as {result.ts} but failed to record the ts: {e}",
                exc_info=True,
            )
        return result

    async def save(self, data: SaveDailyReportInput) -> SaveDailyReportResult:
        """
        Save a web form report and deliver it to Slack at most once.

        Raises:
            InvalidChannelError: channel_id is not the configured DR channel
        """
        if not data.channel_id or data.channel_id.strip() != self.channel_id:
            raise InvalidChannelError("Invalid or missing Slack channel id")

        slug = normalize_slug(data.user_slug)
        existing_slack_ts = await self.get_slack_ts(slug, data.date)

        report = DailyReport(
            report_id=report_id_for(slug, data.date),
            date=data.date,
            weekday=get_weekday_code(data.date),
            user_slug=slug,
            user_name=data.user_name or slug,
            email=data.email,
            slack_user_id=data.slack_user_id,
            slack_team_id=data.slack_team_id,
            channel_id=self.channel_id,
            satisfaction_today=data.satisfaction_today,
            done_today=data.done_today,
            good_more_background=data.good_more_background,
            more_next=data.more_next,
            todo_tomorrow=data.todo_tomorrow,
            wish_tomorrow=data.wish_tomorrow,
            personal_news=data.personal_news,
            tags=data.tags,
            source=DailyReportSource.WEB_FORM,
            slack_ts=existing_slack_ts,
            updated_at=now_iso(),
        )

        saved = await self.upsert(report)
        saved = saved.model_copy(update={
            "user_name": report.user_name,
            "email": report.email,
            "slack_user_id": report.slack_user_id,
            "slack_team_id": report.slack_team_id,
            "channel_id": report.channel_id,
        })

        if existing_slack_ts:
            logger.info(f"Daily report {saved.report_id} already delivered ({existing_slack_ts})")
            return SaveDailyReportResult(report=saved, slack=None)

        slack_result = await self._deliver(saved, data.slack_user_access_token)
        if slack_result.ok and slack_result.ts:
            saved = saved.model_copy(update={"slack_ts": slack_result.ts})

        return SaveDailyReportResult(report=saved, slack=slack_result)

    async def save_from_slack(
        self,
        fields: Dict[str, str],
        user_slug: str,
        date: str,
        slack_ts: str,
        channel_id: str = "",
        slack_user_id: str = "",
        slack_team_id: str = "",
    ) -> Optional[DailyReport]:
        """
        Store a report a member posted directly in the DR channel.

        The message ts is recorded as the delivery ts, so nothing is posted.
        A report submitted through the web form is never overwritten: its own
        Slack post comes back as a channel message, possibly before the ts
        has been recorded.

        Returns:
            The stored report, or None when the message was skipped
        """
        slug = normalize_slug(user_slug)
        match = await self.find_row(slug, date)
        if match:
            if _cell(match.row, COL_SLACK_TS) == slack_ts:
                logger.info(f"Slack message {slack_ts} already stored for {slug} on {date}")
                return None
            if _cell(match.row, COL_SOURCE) == DailyReportSource.WEB_FORM.value:
                logger.info(
                    f"Ignoring Slack message {slack_ts}: {slug} on {date} was submitted via the web form"
                )
                return None

        report = DailyReport(
            report_id=report_id_for(slug, date),
            date=date,
            user_slug=slug,
            slack_user_id=slack_user_id,
            slack_team_id=slack_team_id,
            channel_id=channel_id,
            satisfaction_today=fields.get("satisfaction", ""),
            done_today=fields.get("done", ""),
            good_more_background=fields.get("good", ""),
            more_next=fields.get("more_next", ""),
            todo_tomorrow=fields.get("todo_tomorrow", ""),
            wish_tomorrow=fields.get("wish_tomorrow", ""),
            personal_news=fields.get("personal_news", ""),
            source=DailyReportSource.SLACK_INGEST,
            slack_ts=slack_ts,
        )
        saved = await self.upsert(report)
        logger.info(f"Ingested daily report {saved.report_id} from Slack message {slack_ts}")
        return saved

    # ==================== AGGREGATES ====================

    async def compute_weekly_satisfaction(
        self,
        options: Optional[DailyReportQuery] = None,
    ) -> List[WeeklySatisfactionPoint]:
        """
        Average satisfaction per week for each member, department and the company.

        Reports without a numeric score are ignored.
        """
        reports = await self.fetch(options)
        aggregates: Dict[str, Dict[str, Any]] = {}

        def register(key: str, score: float, **meta):
            entry = aggregates.setdefault(key, {"sum": 0.0, "count": 0, "meta": meta})
            entry["sum"] += score
            entry["count"] += 1

        for report in reports:
            score = parse_satisfaction_score(report.satisfaction_today)
            if score is None:
                continue

            week_start = get_week_start(report.date)
            slug = resolve_user_slug(
                report.user_slug, report.slack_user_id, report.email
            ) or report.user_slug
            department = resolve_department(
                report.user_slug, report.slack_user_id, report.email
            ) or "unknown"

            register(
                f"individual:{slug}:{week_start}", score,
                user_slug=slug, department=department,
                week_start=week_start, scope=SatisfactionScope.INDIVIDUAL,
            )
            register(
                f"department:{department}:{week_start}", score,
                user_slug=f"dept:{department}", department=department,
                week_start=week_start, scope=SatisfactionScope.DEPARTMENT,
            )
            register(
                f"company:{week_start}", score,
                user_slug="company", department="all",
                week_start=week_start, scope=SatisfactionScope.COMPANY,
            )

        return [
            WeeklySatisfactionPoint(
                average_score=round(entry["sum"] / entry["count"], 2),
                sample_size=entry["count"],
                **entry["meta"],
            )
            for entry in aggregates.values()
        ]


_daily_report_repository: Optional[DailyReportRepository] = None


def get_daily_report_repository() -> DailyReportRepository:
    """Get the shared daily report repository."""
    global _daily_report_repository
    if _daily_report_repository is None:
        _daily_report_repository = DailyReportRepository()
    return _daily_report_repository
