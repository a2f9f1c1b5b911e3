"""
Slack Events API endpoint.

Members who post a DR directly in the daily report channel get the report
stored in their sheet. Slack requires a reply within 3 seconds, so events
are acknowledged first and ingested in a background task.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import JSONResponse

from config import settings
from ..integrations.slack import get_slack_integration
from ..repositories import get_daily_report_repository
from ..utils.datetime_utils import report_date_by_29h_rule, slack_ts_to_datetime
from ..utils.dr_format import parse_daily_report_from_slack
from ..utils.team_utils import resolve_user_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/slack")


def _parse_json(body: bytes) -> Dict[str, Any]:
    try:
        value = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="bad_request")
    return value if isinstance(value, dict) else {}


def is_daily_report_message(event: Dict[str, Any]) -> bool:
    """A plain, top-level member message in the DR channel."""
    if event.get("type") != "message":
        return False
    if event.get("subtype") or event.get("bot_id"):
        return False
    thread_ts = event.get("thread_ts")
    if thread_ts and thread_ts != event.get("ts"):
        return False
    channel = str(event.get("channel") or "").strip()
    return bool(channel) and channel == settings.slack_daily_report_channel_id.strip()


async def ingest_daily_report_event(event: Dict[str, Any], team_id: str = "") -> None:
    """Store a DR posted in Slack. Runs after the event has been acknowledged."""
    slack_user_id = str(event.get("user") or "").strip()
    ts = str(event.get("ts") or "").strip()
    fields = parse_daily_report_from_slack(event.get("text") or "")

    if not fields or not ts:
        logger.debug(f"Slack message {ts} is not a daily report")
        return

    user_slug = resolve_user_slug(slack_user_id=slack_user_id)
    if not user_slug:
        logger.warning(f"Daily report from unknown Slack user {slack_user_id} ({ts}), not stored")
        return

    report_date, _ = report_date_by_29h_rule(slack_ts_to_datetime(ts))

    try:
        await get_daily_report_repository().save_from_slack(
            fields,
            user_slug=user_slug,
            date=report_date,
            slack_ts=ts,
            channel_id=str(event.get("channel") or ""),
            slack_user_id=slack_user_id,
            slack_team_id=team_id,
        )
    except Exception as e:
        logger.error(f"Failed to ingest Slack daily report {ts} from {user_slug}: {e}", exc_info=True)


@router.get("/events")
async def slack_events_ready():
    return {"ok": True}


@router.post("/events")
async def slack_events(request: Request, background_tasks: BackgroundTasks):
    body = await request.body()
    payload = _parse_json(body)

    if payload.get("type") == "url_verification" and payload.get("challenge"):
        return JSONResponse({"challenge": payload["challenge"]})

    slack = get_slack_integration()
    if not slack.verify_signature(
        body,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
    ):
        return JSONResponse({"ok": False, "error": "invalid_signature"}, status_code=401)

    # Slack redelivers when the first ack was slow; the original is handled.
    if request.headers.get("X-Slack-Retry-Num"):
        return JSONResponse({"ok": True})

    if payload.get("type") != "event_callback":
        return JSONResponse({"ok": True})

    event = payload.get("event") if isinstance(payload.get("event"), dict) else {}
    if is_daily_report_message(event):
        background_tasks.add_task(
            ingest_daily_report_event,
            event,
            str(payload.get("team_id") or ""),
        )

    return JSONResponse({"ok": True})
