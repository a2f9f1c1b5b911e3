"""
Daily report message format.

A DR posted to Slack is a header line followed by one section per field, each
introduced by a custom emoji shortcode on its own line. The same tags are used
to parse DRs that members post directly in the channel.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

# Field name -> section tag, in message order
DR_TAGS: Dict[str, str] = {
    "satisfaction": ":満足度:",
    "done": ":done:",
    "good": ":good:",
    "more_next": ":more_next:",
    "todo_tomorrow": ":明日の_タスク:",
    "wish_tomorrow": ":タスク_意外:",
    "personal_news": ":個人的_ニュース:",
}

BULLET = "・"

_LINE_SPLIT = re.compile(r"\r?\n")


def bulletize(text: Optional[str]) -> str:
    """Prefix every non-empty line with a bullet, keeping existing bullets."""
    lines = [line.strip() for line in _LINE_SPLIT.split(text or "")]
    lines = [line for line in lines if line]
    return "\n".join(line if line.startswith(BULLET) else f"{BULLET}{line}" for line in lines)


def format_daily_report_message(
    fields: Dict[str, Any],
    date: str = "",
    user_name: str = "",
) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Render DR fields as Slack text plus a single mrkdwn section block.

    Satisfaction is rendered verbatim; every other section is bulletized.
    """
    lines = []
    heading = " ".join(part for part in (date, user_name) if part)
    if heading:
        lines.append(f":spiral_calendar_pad: {heading} #dr")

    for key, tag in DR_TAGS.items():
        value = fields.get(key)
        value = "" if value is None else str(value)
        lines.append(tag)
        lines.append(value.strip() if key == "satisfaction" else bulletize(value))

    text = "\n".join(lines)
    blocks = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": text},
        }
    ]
    return text, blocks


def _tag_of(line: str) -> Optional[str]:
    stripped = line.strip()
    for key, tag in DR_TAGS.items():
        if stripped == tag:
            return key
    return None


def parse_daily_report_from_slack(text: Optional[str]) -> Dict[str, str]:
    """
    Split a Slack DR message back into fields.

    Lines before the first recognised tag are ignored. Only fields whose tag
    appears in the message are returned.
    """
    result: Dict[str, str] = {}
    current: Optional[str] = None
    buffer: List[str] = []

    def flush():
        if current:
            result[current] = "\n".join(buffer).strip()

    for raw in _LINE_SPLIT.split(text or ""):
        key = _tag_of(raw)
        if key:
            flush()
            current = key
            buffer = []
            continue
        if current:
            buffer.append(raw)

    flush()
    return result
