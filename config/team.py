"""
Team directory configuration.

Every member with a daily report tab in the DR spreadsheet must be listed in
DEPARTMENT_OF_USER. The key is the member's user slug, which is also the name
of their tab.

Structure:
- DEPARTMENT_OF_USER: user slug -> department code (A-E)
- USER_SLUG_OF_SLACK: Slack user ID -> user slug (optional, used when the
  slug cannot be derived from the member's email)
"""

from typing import Dict, List

# Valid department codes (used for satisfaction aggregation)
VALID_DEPARTMENTS = ["A", "B", "C", "D", "E"]

# Team members
# Add a member here before they submit their first report:
# 1. slug - lower-case, usually the local part of their work email
# 2. department - one of VALID_DEPARTMENTS
DEPARTMENT_OF_USER: Dict[str, str] = {
    "yamamoto": "A",
    "tanaka": "B",
    "hoshikawa": "C",
    "murakami": "A",
}

# Slack user ID -> user slug
# Get the ID from Slack: profile → ⋮ → Copy member ID
USER_SLUG_OF_SLACK: Dict[str, str] = {
    "U09HVFPNX1P": "murakami",
}


def get_team_slugs() -> List[str]:
    """Get every configured user slug."""
    return list(DEPARTMENT_OF_USER.keys())


def get_valid_departments() -> List[str]:
    """Get list of valid department codes."""
    return VALID_DEPARTMENTS
