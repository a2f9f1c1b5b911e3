"""
JSON API for daily reports, tasks and the dashboard.

Errors are raised as HTTPException and rendered as {"error": "..."} by the
app's exception handler. Storage failures are logged here and surface to the
client only as a generic message.
"""

import logging
import re
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from config import settings
from ..models.api_validation import (
    DONE_REQUIRED_MESSAGE,
    DailyReportCreate,
    DailyReportQuery,
    TaskFilter,
    TaskPatch,
    TaskUpsert,
    clean_tags,
)
from ..models.task import TaskHistoryType, TaskStatus
from ..repositories import (
    DailyReportRepository,
    EntityNotFoundError,
    InvalidChannelError,
    SaveDailyReportInput,
    TaskRepository,
    get_daily_report_repository,
    get_task_repository,
)
from ..utils.datetime_utils import (
    get_local_now,
    get_week_end,
    get_week_start,
    report_date_by_29h_rule,
)
from ..utils.team_utils import normalize_slug_candidate, resolve_user_slug
from .auth import get_current_user, session_slack_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

SAVE_FAILED_MESSAGE = "Failed to save. Please try again later."
DUE_SOON_DAYS = 7

_TAG_SPLIT = re.compile(r"[\s,]+")


def _bad_request(error: ValidationError) -> HTTPException:
    first = error.errors()[0] if error.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid request")
    return HTTPException(status_code=400, detail=f"{field}: {message}" if field else message)


def build_report_query(
    week_start: Optional[str] = None,
    week_end: Optional[str] = None,
    day: Optional[str] = None,
    user_slug: Optional[str] = None,
    search_term: Optional[str] = None,
    tags: Optional[str] = None,
) -> DailyReportQuery:
    """Query from request parameters; a single date overrides the week range."""
    if day:
        week_start = week_end = day
    try:
        return DailyReportQuery(
            user_slug=user_slug or None,
            week_start=week_start or None,
            week_end=week_end or None,
            search_term=search_term or None,
            tags=clean_tags(_TAG_SPLIT.split(tags)) if tags else [],
        )
    except ValidationError as e:
        raise _bad_request(e)


def session_user_slug(user: Dict[str, Any]) -> str:
    """
    Slug for the signed-in user.

    Falls back to a slug derived from the email local part or display name
    when the user is not in the team directory.
    """
    email = user.get("email") or ""
    name = user.get("name") or ""
    candidate = normalize_slug_candidate(email.split("@")[0] if email else name)
    resolved = resolve_user_slug(
        user_slug=candidate or None,
        slack_user_id=user.get("slackUserId") or None,
        email=email or None,
    )
    return resolved or candidate or "unknown"


def _actor(user: Dict[str, Any]) -> Dict[str, str]:
    return {
        "id": user.get("id") or user.get("email") or user.get("slackUserId") or "unknown",
        "name": user.get("name") or user.get("email") or user.get("slackUserId") or "unknown",
    }


# ============================================================================
# Daily reports
# ============================================================================

@router.get("/daily-reports")
async def list_daily_reports(
    week_start: Optional[str] = Query(None, alias="weekStart"),
    week_end: Optional[str] = Query(None, alias="weekEnd"),
    day: Optional[str] = Query(None, alias="date"),
    user_slug: Optional[str] = Query(None, alias="userSlug"),
    q: Optional[str] = None,
    tags: Optional[str] = None,
    repo: DailyReportRepository = Depends(get_daily_report_repository),
):
    """Reports for a week (default: this week) or a single date."""
    query = build_report_query(week_start, week_end, day, user_slug, q, tags)
    reports = await repo.list(query)
    return {"data": [r.model_dump(by_alias=True) for r in reports]}


@router.post("/daily-reports", status_code=201)
async def create_daily_report(
    body: DailyReportCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    repo: DailyReportRepository = Depends(get_daily_report_repository),
):
    """Save today's report and post it to the DR channel once."""
    if not body.done_today.strip():
        raise HTTPException(status_code=400, detail=DONE_REQUIRED_MESSAGE)

    channel_id = settings.slack_daily_report_channel_id.strip()
    if not channel_id:
        logger.error("SLACK_DAILY_REPORT_CHANNEL_ID is not configured")
        raise HTTPException(status_code=500, detail="Slack channel id missing")

    report_date, is_previous_day = report_date_by_29h_rule()
    user_slug = session_user_slug(user)
    email = user.get("email") or ""
    user_token = session_slack_token(user)

    logger.info(
        f"Saving daily report for {user_slug} on {report_date} "
        f"(previous day: {is_previous_day}, user token: {bool(user_token)})"
    )

    try:
        result = await repo.save(SaveDailyReportInput(
            date=report_date,
            user_slug=user_slug,
            user_name=user.get("name") or user_slug or email,
            email=email,
            slack_user_id=user.get("slackUserId") or "",
            slack_team_id=user.get("slackTeamId") or "",
            channel_id=channel_id,
            slack_user_access_token=user_token,
            satisfaction_today=body.satisfaction_today,
            done_today=body.done_today,
            good_more_background=body.good_more_background,
            more_next=body.more_next,
            todo_tomorrow=body.todo_tomorrow,
            wish_tomorrow=body.wish_tomorrow,
            personal_news=body.personal_news,
            tags=body.tags,
        ))
    except InvalidChannelError as e:
        logger.error(f"Daily report rejected: {e}")
        raise HTTPException(status_code=500, detail=SAVE_FAILED_MESSAGE)
    except Exception as e:
        logger.error(f"Failed to save daily report for {user_slug} on {report_date}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=SAVE_FAILED_MESSAGE)

    return {
        "data": result.report.model_dump(by_alias=True),
        "slack": result.slack.to_summary() if result.slack else None,
    }


@router.get("/daily-reports/satisfaction")
async def weekly_satisfaction(
    week_start: Optional[str] = Query(None, alias="weekStart"),
    week_end: Optional[str] = Query(None, alias="weekEnd"),
    user_slug: Optional[str] = Query(None, alias="userSlug"),
    repo: DailyReportRepository = Depends(get_daily_report_repository),
):
    """Weekly satisfaction averages per member, department and company."""
    query = build_report_query(week_start, week_end, user_slug=user_slug)
    points = await repo.compute_weekly_satisfaction(query)
    return {"data": [p.model_dump(by_alias=True) for p in points]}


# ============================================================================
# Tasks
# ============================================================================

@router.get("/tasks")
async def list_tasks(
    assignee: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    due_before: Optional[str] = Query(None, alias="dueBefore"),
    project_name: Optional[str] = Query(None, alias="projectName"),
    q: Optional[str] = None,
    repo: TaskRepository = Depends(get_task_repository),
):
    """Task board, sorted by due date then priority."""
    try:
        filters = TaskFilter(
            assignee=assignee or None,
            status=status or None,
            priority=priority or None,
            due_before=due_before or None,
            project_name=project_name or None,
            search_term=q or None,
        )
    except ValidationError as e:
        raise _bad_request(e)

    tasks = await repo.list(filters)
    return {"data": [t.model_dump(by_alias=True) for t in tasks]}


@router.post("/tasks", status_code=201)
async def create_task(
    body: TaskUpsert,
    user: Dict[str, Any] = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Register a task."""
    actor = _actor(user)
    history_event = {
        "type": TaskHistoryType.UPDATE,
        "actor_id": actor["id"],
        "actor_name": actor["name"],
        "details": "タスクを登録しました。",
    }

    try:
        task = await repo.save(body, history_events=[history_event])
    except Exception as e:
        logger.error(f"Failed to save task {body.task_id or '(new)'}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=SAVE_FAILED_MESSAGE)

    return {"data": task.model_dump(by_alias=True)}


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    repo: TaskRepository = Depends(get_task_repository),
):
    task = await repo.get(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"data": task.model_dump(by_alias=True)}


@router.patch("/tasks/{task_id}")
async def patch_task(
    task_id: str,
    body: TaskPatch,
    user: Dict[str, Any] = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Update the fields that are sent; other fields keep their stored values."""
    try:
        task = await repo.patch(task_id, body, actor=_actor(user))
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    except ValidationError as e:
        raise _bad_request(e)
    except Exception as e:
        logger.error(f"Failed to update task {task_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=SAVE_FAILED_MESSAGE)

    return {"ok": True, "data": task.model_dump(by_alias=True)}


# ============================================================================
# Dashboard
# ============================================================================

@router.get("/dashboard")
async def dashboard(
    report_repo: DailyReportRepository = Depends(get_daily_report_repository),
    task_repo: TaskRepository = Depends(get_task_repository),
):
    """
    Summary for the home page.

    - this week's report count
    - weekly satisfaction points
    - task counts by status
    - open tasks due within a week, overdue ones included
    """
    now = get_local_now()
    week_start = get_week_start(now)
    query = DailyReportQuery(week_start=week_start, week_end=get_week_end(week_start))

    reports = await report_repo.fetch(query)
    satisfaction = await report_repo.compute_weekly_satisfaction(query)
    tasks = await task_repo.list()

    today = now.date()
    horizon = (today + timedelta(days=DUE_SOON_DAYS)).isoformat()
    closed = {TaskStatus.DONE.value, TaskStatus.REJECTED.value}
    due_soon = [
        t for t in tasks
        if t.due_date and t.status not in closed and t.due_date[:10] <= horizon
    ]

    counts = Counter(t.status for t in tasks)
    return {
        "data": {
            "weekStart": week_start,
            "reportCount": len(reports),
            "weeklySatisfaction": [p.model_dump(by_alias=True) for p in satisfaction],
            "taskCounts": {s.value: counts.get(s.value, 0) for s in TaskStatus},
            "dueSoon": [
                {
                    **t.model_dump(by_alias=True),
                    "overdue": t.due_date[:10] < today.isoformat(),
                }
                for t in due_soon
            ],
        }
    }
