"""
Team member lookup utilities.

Centralized functions for mapping a signed-in user (slug, Slack ID or email)
to their user slug and department, so reports land in the right tab and
aggregate under the right department.
"""

import logging
import re
from typing import Optional

from config.team import DEPARTMENT_OF_USER, USER_SLUG_OF_SLACK, get_valid_departments

logger = logging.getLogger(__name__)

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def normalize_slug(slug: Optional[str]) -> str:
    """Trim and lower-case a user slug."""
    return (slug or "").strip().lower()


def normalize_slug_candidate(text: Optional[str]) -> str:
    """
    Turn a free-form name or email local part into a slug candidate.

    "Taro Yamamoto" -> "taro-yamamoto", "--x__y--" -> "x-y"
    """
    collapsed = _NON_SLUG_CHARS.sub("-", (text or "").strip().lower())
    return collapsed.strip("-")


def resolve_user_slug(
    user_slug: Optional[str] = None,
    slack_user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[str]:
    """
    Resolve a known user slug.

    Search order:
    1. The slug itself, if it is a configured team member
    2. config.team.USER_SLUG_OF_SLACK by Slack user ID
    3. The local part of the email, if it is a configured team member

    Returns:
        The slug, or None when the user is not in the team directory
    """
    slug = normalize_slug(user_slug)
    if slug and slug in DEPARTMENT_OF_USER:
        return slug

    if slack_user_id and slack_user_id in USER_SLUG_OF_SLACK:
        return USER_SLUG_OF_SLACK[slack_user_id]

    if email:
        guess = email.split("@")[0].lower()
        if guess and guess in DEPARTMENT_OF_USER:
            return guess

    return None


def resolve_department(
    user_slug: Optional[str] = None,
    slack_user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[str]:
    """Department code of the resolved user, or None (also for a misconfigured code)."""
    slug = resolve_user_slug(user_slug, slack_user_id, email)
    if not slug:
        return None
    department = DEPARTMENT_OF_USER.get(slug)
    if department not in get_valid_departments():
        logger.warning(f"User {slug} has invalid department {department!r}")
        return None
    return department
