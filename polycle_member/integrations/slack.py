"""
Slack integration for daily report delivery.

Reports are posted as the member (user token, xoxp-) when possible and fall
back to the bot token. Posting never raises: callers get a SlackPostResult
and decide what to log.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.http_retry.builtin_async_handlers import (
    AsyncConnectionErrorRetryHandler,
    AsyncRateLimitErrorRetryHandler,
)
from slack_sdk.signature import SignatureVerifier
from slack_sdk.web.async_client import AsyncWebClient

from config import settings
from ..models.daily_report import DailyReport
from ..utils.dr_format import format_daily_report_message

logger = logging.getLogger(__name__)

USER_TOKEN_PREFIX = "xoxp-"
BOT_RETRY_COUNT = 3


@dataclass
class SlackPostResult:
    """Outcome of a chat.postMessage call."""
    ok: bool
    used_token_type: str
    ts: Optional[str] = None
    channel: Optional[str] = None
    error: Optional[str] = None
    needed: Optional[str] = None
    provided: Optional[str] = None
    raw: Any = field(default=None, repr=False)

    def to_summary(self) -> Dict[str, Any]:
        """Fields exposed to API clients."""
        return {
            "ok": self.ok,
            "ts": self.ts,
            "usedTokenType": self.used_token_type,
            "error": self.error,
        }


def usable_user_token(token: Optional[str]) -> Optional[str]:
    """The trimmed token if it is a Slack user token, else None."""
    if not isinstance(token, str):
        return None
    token = token.strip()
    return token if token.startswith(USER_TOKEN_PREFIX) else None


def report_fields(report: DailyReport) -> Dict[str, str]:
    """Map a report onto the DR message sections."""
    return {
        "satisfaction": report.satisfaction_today,
        "done": report.done_today,
        "good": report.good_more_background,
        "more_next": report.more_next,
        "todo_tomorrow": report.todo_tomorrow,
        "wish_tomorrow": report.wish_tomorrow,
        "personal_news": report.personal_news,
    }


def build_message_payload(report: DailyReport) -> Dict[str, Any]:
    """Text and blocks for a report, with a context block listing its tags."""
    text, blocks = format_daily_report_message(
        report_fields(report),
        date=report.date,
        user_name=report.user_name,
    )
    blocks = list(blocks)

    if report.tags:
        tags_line = " ".join(f"#{tag}" for tag in report.tags)
        text = f"{text}\n\n{tags_line}"
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": tags_line}],
        })

    return {"text": text, "blocks": blocks}


class SlackIntegration:
    """Posts daily reports and verifies incoming Slack requests."""

    def __init__(self, bot_token: Optional[str] = None, signing_secret: Optional[str] = None):
        self.bot_token = (bot_token if bot_token is not None else settings.slack_bot_token).strip()
        self.signing_secret = (
            signing_secret if signing_secret is not None else settings.slack_signing_secret
        )
        self._bot_client: Optional[AsyncWebClient] = None

    def get_bot_client(self) -> AsyncWebClient:
        """Shared bot client; rate limits and connection errors are retried."""
        if self._bot_client is None:
            self._bot_client = AsyncWebClient(
                token=self.bot_token,
                retry_handlers=[
                    AsyncConnectionErrorRetryHandler(max_retry_count=BOT_RETRY_COUNT),
                    AsyncRateLimitErrorRetryHandler(max_retry_count=BOT_RETRY_COUNT),
                ],
            )
        return self._bot_client

    def _client_for(self, token: str, token_type: str) -> AsyncWebClient:
        if token_type == "bot":
            return self.get_bot_client()
        return AsyncWebClient(token=token)

    async def _send(
        self,
        token: str,
        token_type: str,
        channel_id: str,
        payload: Dict[str, Any],
        thread_ts: Optional[str],
        report_id: str,
    ) -> SlackPostResult:
        client = self._client_for(token, token_type)
        logger.debug(f"Posting report {report_id} to {channel_id} with {token_type} token ({token[:5]})")

        try:
            response = await client.chat_postMessage(
                channel=channel_id,
                text=payload["text"],
                blocks=payload["blocks"],
                thread_ts=thread_ts,
            )
        except SlackApiError as e:
            data = getattr(e.response, "data", None) or {}
            logger.error(
                f"Slack post failed for {report_id} ({token_type} token): "
                f"{data.get('error')} needed={data.get('needed')} provided={data.get('provided')}"
            )
            return SlackPostResult(
                ok=False,
                used_token_type=token_type,
                error=data.get("error") or str(e),
                needed=data.get("needed"),
                provided=data.get("provided"),
                raw=data,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Slack transport error for {report_id} ({token_type} token): {e}")
            return SlackPostResult(
                ok=False,
                used_token_type=token_type,
                error=str(e) or type(e).__name__,
                raw=None,
            )

        data = response.data if isinstance(response.data, dict) else {}
        ts = data.get("ts")
        channel = data.get("channel")
        return SlackPostResult(
            ok=bool(data.get("ok")),
            used_token_type=token_type,
            ts=ts if isinstance(ts, str) else None,
            channel=channel if isinstance(channel, str) else None,
            error=data.get("error"),
            needed=data.get("needed"),
            provided=data.get("provided"),
            raw=data,
        )

    async def post_daily_report(
        self,
        report: DailyReport,
        channel_id: str,
        thread_ts: Optional[str] = None,
        user_access_token: Optional[str] = None,
        allow_bot_fallback: bool = True,
    ) -> SlackPostResult:
        """
        Post a report to the channel.

        The user token is tried first when it is an xoxp- token. If that fails
        and allow_bot_fallback is set, the bot token is used.
        """
        payload = build_message_payload(report)
        channel_id = (channel_id or "").strip()
        user_token = usable_user_token(user_access_token)

        if not channel_id:
            return SlackPostResult(
                ok=False,
                used_token_type="user" if user_token else "bot",
                error="channel_missing",
            )

        if user_token:
            result = await self._send(
                user_token, "user", channel_id, payload, thread_ts, report.report_id
            )
            if result.ok or not allow_bot_fallback:
                return result
            logger.warning(f"User token post failed ({result.error}), falling back to bot")

        if not self.bot_token:
            return SlackPostResult(ok=False, used_token_type="bot", error="bot_token_missing")

        return await self._send(
            self.bot_token, "bot", channel_id, payload, thread_ts, report.report_id
        )

    def verify_signature(self, body: bytes, timestamp: Optional[str], signature: Optional[str]) -> bool:
        """Check an incoming request against the signing secret (5 minute window)."""
        if not self.signing_secret or not timestamp or not signature:
            return False
        verifier = SignatureVerifier(self.signing_secret)
        return verifier.is_valid(body=body, timestamp=timestamp, signature=signature)


# Singleton instance
_slack_integration: Optional[SlackIntegration] = None


def get_slack_integration() -> SlackIntegration:
    """Get the shared Slack integration."""
    global _slack_integration
    if _slack_integration is None:
        _slack_integration = SlackIntegration()
    return _slack_integration
