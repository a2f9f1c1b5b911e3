"""Task data model for the task board."""

from enum import Enum
from typing import List, Optional
from pydantic import Field

from .daily_report import CamelModel


class TaskStatus(str, Enum):
    """Task status values as stored in the sheet."""
    NOT_STARTED = "未着手"
    IN_PROGRESS = "進行中"
    AWAITING_REVIEW = "レビュー待ち"
    DONE = "完了"
    ON_HOLD = "保留"
    REJECTED = "棄却"


class TaskPriority(str, Enum):
    """Task priority levels."""
    HIGH = "高"
    MEDIUM = "中"
    LOW = "低"


# Sort order for the task board (lower first)
PRIORITY_WEIGHT = {
    TaskPriority.HIGH.value: 0,
    TaskPriority.MEDIUM.value: 1,
    TaskPriority.LOW.value: 2,
}


class TaskHistoryType(str, Enum):
    STATUS_CHANGE = "status_change"
    COMMENT = "comment"
    UPDATE = "update"


class TaskLink(CamelModel):
    """A reference link; stored as "label|url" or a bare url."""
    url: str
    label: Optional[str] = None


class TaskHistoryEvent(CamelModel):
    """One entry in a task's history log."""
    id: str
    task_id: str
    happened_at: str
    actor_id: str = "unknown"
    actor_name: str = "unknown"
    type: TaskHistoryType = TaskHistoryType.UPDATE
    details: str = ""


class Task(CamelModel):
    """Task model representing a row in the tasks sheet."""

    # Identification
    task_id: str

    # Core fields
    project_name: str
    title: str
    description: str = ""
    assignee_name: str
    assignee_email: str = ""
    slack_user_id: Optional[str] = None

    # Classification
    category: Optional[str] = None
    task_type: Optional[str] = None
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: TaskPriority = TaskPriority.MEDIUM
    progress_percent: int = 0

    # Timing (YYYY-MM-DD)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    done_date: Optional[str] = None

    # Details
    detail_url: Optional[str] = None
    links: List[TaskLink] = Field(default_factory=list)
    notes: Optional[str] = None
    watchers: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    # Metadata
    created_by: str = ""
    created_at: str = ""
    updated_at: str = ""
    history: List[TaskHistoryEvent] = Field(default_factory=list)
