"""
Task repository backed by the tasks spreadsheet.

Tab "tasks" (A-V):
    taskId, projectName, title, description, assigneeName, assigneeEmail,
    slackUserId, category, taskType, status, progressPercent, priority,
    links, startDate, dueDate, doneDate, notes, watchers, createdBy,
    createdAt, updatedAt, tags

Tab "task_history" (A-G):
    id, taskId, happenedAt, actorId, actorName, type, details

Links are stored one per line as "label|url" (or a bare url). The detail URL
is stored as the link labelled "detail".
"""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from config import settings
from ..integrations.sheets import (
    GoogleSheetsIntegration,
    get_sheets_integration,
    safe_string,
    split_sheet_values,
)
from ..models.api_validation import TaskFilter, TaskPatch, TaskUpsert
from ..models.task import (
    PRIORITY_WEIGHT,
    Task,
    TaskHistoryEvent,
    TaskHistoryType,
    TaskLink,
    TaskPriority,
    TaskStatus,
)
from ..utils.datetime_utils import now_iso, parse_timestamp
from .exceptions import EntityNotFoundError

logger = logging.getLogger(__name__)

TASK_SHEET_NAME = "tasks"
TASK_HISTORY_SHEET_NAME = "task_history"
DETAIL_LINK_LABEL = "detail"

_STATUS_VALUES = {s.value for s in TaskStatus}
_PRIORITY_VALUES = {p.value for p in TaskPriority}


def _cell(row: List[Any], index: int) -> str:
    return safe_string(row[index]) if index < len(row) else ""


def _normalize(value: Optional[str]) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def parse_links(value: str) -> List[TaskLink]:
    links = []
    for entry in value.splitlines():
        entry = entry.strip()
        if not entry:
            continue
        label, sep, url = entry.partition("|")
        if sep and url:
            links.append(TaskLink(label=label or None, url=url))
        else:
            links.append(TaskLink(url=label))
    return links


def format_links(links: List[TaskLink], detail_url: Optional[str] = None) -> str:
    entries = [f"{link.label}|{link.url}" if link.label else link.url for link in links]
    if detail_url:
        entries.append(f"{DETAIL_LINK_LABEL}|{detail_url}")
    return "\n".join(entries)


def _parse_progress(value: str) -> int:
    try:
        return max(0, min(100, int(float(value))))
    except ValueError:
        return 0


def map_row_to_task(row: List[Any]) -> Optional[Task]:
    """Build a task from a sheet row; rows without an id are skipped."""
    task_id = _cell(row, 0)
    if not task_id:
        return None

    detail_url = None
    links = []
    for link in parse_links(_cell(row, 12)):
        if link.label == DETAIL_LINK_LABEL and detail_url is None:
            detail_url = link.url
        else:
            links.append(link)

    status = _cell(row, 9)
    priority = _cell(row, 11)

    return Task(
        task_id=task_id,
        project_name=_cell(row, 1),
        title=_cell(row, 2),
        description=_cell(row, 3),
        assignee_name=_cell(row, 4),
        assignee_email=_cell(row, 5),
        slack_user_id=_cell(row, 6) or None,
        category=_cell(row, 7) or None,
        task_type=_cell(row, 8) or None,
        status=status if status in _STATUS_VALUES else TaskStatus.NOT_STARTED,
        progress_percent=_parse_progress(_cell(row, 10) or "0"),
        priority=priority if priority in _PRIORITY_VALUES else TaskPriority.MEDIUM,
        links=links,
        start_date=_cell(row, 13) or None,
        due_date=_cell(row, 14) or None,
        done_date=_cell(row, 15) or None,
        notes=_cell(row, 16) or None,
        watchers=[w.strip() for w in _cell(row, 17).split(",") if w.strip()],
        created_by=_cell(row, 18),
        created_at=_cell(row, 19),
        updated_at=_cell(row, 20),
        tags=_cell(row, 21).split(),
        detail_url=detail_url,
    )


def task_to_row(task: Task) -> List[Any]:
    return [
        task.task_id,
        task.project_name,
        task.title,
        task.description,
        task.assignee_name,
        task.assignee_email,
        task.slack_user_id or "",
        task.category or "",
        task.task_type or "",
        task.status,
        task.progress_percent or 0,
        task.priority,
        format_links(task.links, task.detail_url),
        task.start_date or "",
        task.due_date or "",
        task.done_date or "",
        task.notes or "",
        ",".join(task.watchers),
        task.created_by,
        task.created_at,
        task.updated_at,
        " ".join(task.tags),
    ]


def map_row_to_history(row: List[Any]) -> Optional[TaskHistoryEvent]:
    event_id = _cell(row, 0)
    task_id = _cell(row, 1)
    if not event_id or not task_id:
        return None
    event_type = _cell(row, 5)
    return TaskHistoryEvent(
        id=event_id,
        task_id=task_id,
        happened_at=_cell(row, 2),
        actor_id=_cell(row, 3) or "unknown",
        actor_name=_cell(row, 4) or "unknown",
        type=event_type if event_type in {t.value for t in TaskHistoryType} else TaskHistoryType.UPDATE,
        details=_cell(row, 6),
    )


def new_task_id() -> str:
    return f"tsk_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def build_history_event(task_id: str, event: Dict[str, Any]) -> TaskHistoryEvent:
    """Fill in id, time and actor defaults for a history event."""
    actor_id = (event.get("actor_id") or "").strip()
    actor_name = (event.get("actor_name") or "").strip()
    return TaskHistoryEvent(
        id=event.get("id") or f"hist_{task_id}_{uuid.uuid4()}",
        task_id=task_id,
        happened_at=event.get("happened_at") or now_iso(),
        actor_id=actor_id or "unknown",
        actor_name=actor_name or actor_id or "unknown",
        type=event.get("type") or TaskHistoryType.UPDATE,
        details=event.get("details") or "",
    )


def _due_sort_key(task: Task):
    due = parse_timestamp(task.due_date)
    return (due is None, due or 0)


def sort_tasks(tasks: List[Task]) -> List[Task]:
    """Due date (blanks last), then priority, newest update, task id."""
    return sorted(
        tasks,
        key=lambda t: (
            _due_sort_key(t),
            PRIORITY_WEIGHT.get(t.priority, len(PRIORITY_WEIGHT)),
            -(parse_timestamp(t.updated_at) or 0),
            t.task_id,
        ),
    )


def matches_filters(task: Task, filters: TaskFilter) -> bool:
    assignee = _normalize(filters.assignee)
    if assignee and assignee not in _normalize(task.assignee_name):
        return False

    if filters.status and task.status != filters.status:
        return False

    if filters.priority and task.priority != filters.priority:
        return False

    project = _normalize(filters.project_name)
    if project and project not in _normalize(task.project_name):
        return False

    due_before = parse_timestamp(filters.due_before)
    if due_before is not None:
        due = parse_timestamp(task.due_date)
        if due is None or due > due_before:
            return False

    term = _normalize(filters.search_term)
    if term:
        haystack = " ".join([
            task.title,
            task.notes or "",
            task.project_name,
            task.assignee_name,
            task.detail_url or "",
            " ".join(task.tags),
        ]).lower()
        if term not in haystack:
            return False

    return True


class TaskRepository:
    """Repository for tasks and their history."""

    def __init__(
        self,
        sheets: Optional[GoogleSheetsIntegration] = None,
        spreadsheet_id: Optional[str] = None,
    ):
        self.sheets = sheets or get_sheets_integration()
        self.spreadsheet_id = (
            spreadsheet_id if spreadsheet_id is not None else settings.sheets_tasks_spreadsheet_id
        )

    # ==================== TASK ROWS ====================

    async def _read_task_rows(self) -> List[List[str]]:
        values = await self.sheets.read_values(self.spreadsheet_id, f"'{TASK_SHEET_NAME}'!A:V")
        return split_sheet_values(values)["rows"]

    async def fetch_all(self) -> List[Task]:
        """Every task in the sheet, in sheet order."""
        tasks = []
        for row in await self._read_task_rows():
            task = map_row_to_task(row)
            if task:
                tasks.append(task)
        return tasks

    async def upsert(self, task: Task) -> Task:
        """Update the task's row in place or append it. createdAt is carried forward."""
        rows = await self._read_task_rows()
        target = task.task_id.strip()
        row_number = None
        existing_created_at = ""
        for index, row in enumerate(rows):
            if _cell(row, 0) == target:
                row_number = index + 2
                existing_created_at = _cell(row, 19)
                break

        now = now_iso()
        task = task.model_copy(update={
            "created_at": task.created_at or existing_created_at or now,
            "updated_at": task.updated_at or now,
        })
        payload = [task_to_row(task)]

        if row_number:
            await self.sheets.update_values(
                self.spreadsheet_id, f"'{TASK_SHEET_NAME}'!A{row_number}:V{row_number}", payload
            )
            logger.info(f"Updated task {task.task_id} in row {row_number}")
        else:
            await self.sheets.append_values(
                self.spreadsheet_id, f"'{TASK_SHEET_NAME}'!A:V", payload
            )
            logger.info(f"Appended task {task.task_id}")

        return task

    # ==================== HISTORY ====================

    async def append_history(self, event: TaskHistoryEvent) -> None:
        await self.sheets.append_values(
            self.spreadsheet_id,
            f"'{TASK_HISTORY_SHEET_NAME}'!A:G",
            [[
                event.id,
                event.task_id,
                event.happened_at,
                event.actor_id,
                event.actor_name,
                event.type,
                event.details,
            ]],
        )

    async def fetch_history(self, task_id: str) -> List[TaskHistoryEvent]:
        """History of one task, oldest first."""
        values = await self.sheets.read_values(
            self.spreadsheet_id, f"'{TASK_HISTORY_SHEET_NAME}'!A:G"
        )
        events = []
        for row in split_sheet_values(values)["rows"]:
            event = map_row_to_history(row)
            if event and event.task_id == task_id:
                events.append(event)
        return sorted(events, key=lambda e: parse_timestamp(e.happened_at) or 0)

    # ==================== QUERIES ====================

    async def list(self, filters: Optional[TaskFilter] = None) -> List[Task]:
        """Tasks matching the filters, in board order."""
        filters = filters or TaskFilter()
        tasks = await self.fetch_all()
        return sort_tasks([t for t in tasks if matches_filters(t, filters)])

    async def get(self, task_id: str) -> Optional[Task]:
        """A task with its history, or None."""
        for task in await self.fetch_all():
            if task.task_id == task_id:
                history = await self.fetch_history(task_id)
                return task.model_copy(update={"history": history})
        return None

    # ==================== WRITES ====================

    async def save(
        self,
        payload: TaskUpsert,
        history_events: Optional[List[Dict[str, Any]]] = None,
    ) -> Task:
        """
        Create or replace a task and append history events.

        History failures are logged; the task itself is already saved.
        """
        data = payload.model_dump(exclude={"updated_at"})
        data["task_id"] = payload.task_id or new_task_id()
        data["created_at"] = payload.created_at or ""
        task = await self.upsert(Task(**data))

        appended = []
        for raw in history_events or []:
            event = build_history_event(task.task_id, raw)
            try:
                await self.append_history(event)
                appended.append(event)
            except Exception as e:
                logger.error(f"Failed to append history {event.id} for {task.task_id}: {e}")

        if appended:
            task = task.model_copy(update={"history": list(task.history) + appended})
        return task

    async def patch(
        self,
        task_id: str,
        changes: TaskPatch,
        actor: Optional[Dict[str, str]] = None,
    ) -> Task:
        """
        Merge sent fields onto the stored task.

        A status change is recorded in the history.

        Raises:
            EntityNotFoundError: No task with this id
        """
        current = None
        for task in await self.fetch_all():
            if task.task_id == task_id:
                current = task
                break
        if current is None:
            raise EntityNotFoundError(f"Task {task_id} not found")

        updates = changes.model_dump(exclude_unset=True)
        merged = current.model_dump()
        merged.update(updates)
        merged["task_id"] = current.task_id
        merged["created_at"] = current.created_at
        merged["updated_at"] = ""
        merged.pop("history", None)

        history_events = []
        new_status = merged.get("status")
        if "status" in updates and new_status != current.status:
            actor = actor or {}
            history_events.append({
                "actor_id": actor.get("id", ""),
                "actor_name": actor.get("name", ""),
                "type": TaskHistoryType.STATUS_CHANGE,
                "details": f"{current.status} → {new_status}",
            })

        return await self.save(TaskUpsert(**merged), history_events=history_events)


_task_repository: Optional[TaskRepository] = None


def get_task_repository() -> TaskRepository:
    """Get the shared task repository."""
    global _task_repository
    if _task_repository is None:
        _task_repository = TaskRepository()
    return _task_repository
