"""
Pydantic models for API endpoint input validation.

Request bodies use camelCase keys (snake_case is accepted too). Query filters
are plain models built by the route handlers.
"""

import re
from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator

from .daily_report import CamelModel
from .task import TaskLink, TaskPriority, TaskStatus

DONE_REQUIRED_MESSAGE = "今日やったこと（Done）を入力してください"

_URL_PATTERN = re.compile(r"^https?://\S+$")


def clean_tags(value: Any) -> List[str]:
    """
    Normalise tags from a list or a space-separated string.

    Leading "#" is stripped, blanks dropped, duplicates removed (first wins).
    """
    if value is None:
        return []
    if isinstance(value, str):
        candidates = value.split()
    elif isinstance(value, (list, tuple)):
        candidates = [item for item in value if isinstance(item, str)]
    else:
        return []

    tags: List[str] = []
    for raw in candidates:
        tag = raw.strip().lstrip("#").strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


# ============================================
# DAILY REPORTS
# ============================================

class DailyReportCreate(CamelModel):
    """Daily report form submission. Done is checked by the route (400)."""
    satisfaction_today: str = ""
    done_today: str = ""
    good_more_background: str = ""
    more_next: str = ""
    todo_tomorrow: str = ""
    wish_tomorrow: str = ""
    personal_news: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator(
        "satisfaction_today",
        "done_today",
        "good_more_background",
        "more_next",
        "todo_tomorrow",
        "wish_tomorrow",
        "personal_news",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v):
        return v if isinstance(v, str) else ""

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v):
        return clean_tags(v)


class DailyReportQuery(BaseModel):
    """Filters for listing daily reports."""
    user_slug: Optional[str] = None
    week_start: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    week_end: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    search_term: Optional[str] = Field(None, max_length=200)
    tags: List[str] = Field(default_factory=list)


# ============================================
# TASKS
# ============================================

class _TaskFields(CamelModel):
    """Validators shared by create and patch payloads."""

    @field_validator("project_name", "title", "assignee_name", check_fields=False)
    @classmethod
    def validate_required_text(cls, v):
        if v is None:
            return v
        stripped = v.strip()
        if not stripped:
            raise ValueError("cannot be empty after stripping whitespace")
        return stripped

    @field_validator("start_date", "due_date", "done_date", "notes", check_fields=False)
    @classmethod
    def strip_optional(cls, v):
        return _blank_to_none(v)

    @field_validator("detail_url", check_fields=False)
    @classmethod
    def validate_detail_url(cls, v):
        stripped = _blank_to_none(v)
        if stripped and not _URL_PATTERN.match(stripped):
            raise ValueError("detailUrl must be an http(s) URL or empty")
        return stripped

    @field_validator("tags", check_fields=False, mode="before")
    @classmethod
    def coerce_tags(cls, v):
        if v is None:
            return v
        return clean_tags(v)


class TaskUpsert(_TaskFields):
    """Input validation for creating or replacing a task."""
    task_id: Optional[str] = Field(None, max_length=100)
    project_name: str = Field(..., min_length=1, max_length=200)
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field("", max_length=10000)
    assignee_name: str = Field(..., min_length=1, max_length=100)
    assignee_email: str = ""
    slack_user_id: Optional[str] = None
    category: Optional[str] = None
    task_type: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    progress_percent: int = Field(0, ge=0, le=100)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    done_date: Optional[str] = None
    detail_url: Optional[str] = None
    links: List[TaskLink] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=10000)
    watchers: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    created_by: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TaskPatch(_TaskFields):
    """Partial task update; only fields that are sent are applied."""
    project_name: Optional[str] = Field(None, max_length=200)
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=10000)
    assignee_name: Optional[str] = Field(None, max_length=100)
    assignee_email: Optional[str] = None
    slack_user_id: Optional[str] = None
    category: Optional[str] = None
    task_type: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    progress_percent: Optional[int] = Field(None, ge=0, le=100)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    done_date: Optional[str] = None
    detail_url: Optional[str] = None
    links: Optional[List[TaskLink]] = None
    notes: Optional[str] = Field(None, max_length=10000)
    watchers: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class TaskFilter(BaseModel):
    """Input validation for task board filtering."""
    assignee: Optional[str] = Field(None, max_length=100)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_before: Optional[str] = None
    project_name: Optional[str] = Field(None, max_length=200)
    search_term: Optional[str] = Field(None, max_length=200)
