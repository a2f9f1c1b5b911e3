from .daily_report import (
    DailyReport,
    DailyReportSource,
    Weekday,
    SatisfactionScope,
    WeeklySatisfactionPoint,
)
from .task import Task, TaskStatus, TaskPriority, TaskLink, TaskHistoryEvent, TaskHistoryType

__all__ = [
    "DailyReport",
    "DailyReportSource",
    "Weekday",
    "SatisfactionScope",
    "WeeklySatisfactionPoint",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "TaskLink",
    "TaskHistoryEvent",
    "TaskHistoryType",
]
