"""Format validators mirrored from the schema's utility functions.

These match ``validate_api_key_format`` and ``is_valid_email`` as installed
by :mod:`forgedb.functions`, so callers can check input before it reaches a
CHECK constraint. They validate shape only, never that a key works.
"""

from __future__ import annotations

import re

API_KEY_PATTERNS: dict[str, re.Pattern[str]] = {
    "openai": re.compile(r"^sk-(proj-)?[a-zA-Z0-9_-]{32,}$"),
    "gemini": re.compile(r"^AIza[a-zA-Z0-9_-]{35}$"),
    "anthropic": re.compile(r"^sk-ant-[a-zA-Z0-9]{32,}$"),
}

_EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$", re.IGNORECASE)


def validate_api_key_format(provider: str, api_key: str | None) -> bool:
    """Return True if *api_key* has the shape *provider* issues.

    Unknown providers are rejected for every key. Provider names are
    case-sensitive, as in the database.
    """
    pattern = API_KEY_PATTERNS.get(provider)
    if pattern is None or api_key is None:
        return False
    return pattern.fullmatch(api_key) is not None


def is_valid_email(email: str | None) -> bool:
    if email is None:
        return False
    return _EMAIL_PATTERN.fullmatch(email) is not None
