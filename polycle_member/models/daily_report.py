"""Daily report data models."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DailyReportSource(str, Enum):
    """Where a report came from."""
    MANUAL = "manual"
    SLACK_INGEST = "slack_ingest"
    WEB_FORM = "web_form"


class Weekday(str, Enum):
    MON = "Mon"
    TUE = "Tue"
    WED = "Wed"
    THU = "Thu"
    FRI = "Fri"
    SAT = "Sat"
    SUN = "Sun"


class SatisfactionScope(str, Enum):
    INDIVIDUAL = "individual"
    DEPARTMENT = "department"
    COMPANY = "company"


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys for the API."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class DailyReport(CamelModel):
    """
    One member's report for one date.

    The natural key is (date, user_slug); report_id is derived from it as
    dr_<slug>_<date>.
    """

    report_id: str = ""
    date: str  # YYYY-MM-DD
    weekday: Weekday = Weekday.SUN

    # Author
    user_slug: str
    user_name: str = ""
    email: str = ""
    slack_user_id: str = ""
    slack_team_id: str = ""
    channel_id: str = ""

    # Content
    satisfaction_today: str = ""
    done_today: str = ""
    good_more_background: str = ""
    more_next: str = ""
    todo_tomorrow: str = ""
    wish_tomorrow: str = ""
    personal_news: str = ""
    tags: List[str] = Field(default_factory=list)

    # Metadata
    source: DailyReportSource = DailyReportSource.MANUAL
    slack_ts: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    def content_fields(self) -> List[str]:
        """Free-text fields in form order."""
        return [
            self.satisfaction_today,
            self.done_today,
            self.good_more_background,
            self.more_next,
            self.todo_tomorrow,
            self.wish_tomorrow,
            self.personal_news,
        ]


class WeeklySatisfactionPoint(CamelModel):
    """Average satisfaction for one scope over one week."""
    user_slug: str
    department: str
    week_start: str  # YYYY-MM-DD
    average_score: float
    sample_size: int
    scope: SatisfactionScope
