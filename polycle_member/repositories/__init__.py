"""
Repositories over the Google Sheets store.

Each repository maps rows of its tabs to models and implements upsert by
natural key.
"""

from .daily_reports import (
    DailyReportRepository,
    SaveDailyReportInput,
    SaveDailyReportResult,
    get_daily_report_repository,
)
from .tasks import TaskRepository, get_task_repository
from .exceptions import RepositoryError, InvalidChannelError, EntityNotFoundError

__all__ = [
    "DailyReportRepository",
    "SaveDailyReportInput",
    "SaveDailyReportResult",
    "get_daily_report_repository",
    "TaskRepository",
    "get_task_repository",
    "RepositoryError",
    "InvalidChannelError",
    "EntityNotFoundError",
]
