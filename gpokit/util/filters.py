"""
Include/exclude filtering of GPO display names.
"""

from fnmatch import fnmatchcase
from typing import Iterable


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive wildcard match of name against any pattern."""
    lowered = name.lower()
    return any(fnmatchcase(lowered, pattern.lower()) for pattern in patterns)


def is_selected(
    name: str,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> bool:
    """
    Decide whether a display name passes the include/exclude filters.

    An empty include list selects everything. Exclude wins over include.

    Example:
        >>> is_selected("Default Domain Policy", include=["Default*"])
        True
        >>> is_selected("Default Domain Policy", exclude=["*domain*"])
        False
    """
    include = list(include or [])
    exclude = list(exclude or [])

    if include and not matches_any(name, include):
        return False
    if exclude and matches_any(name, exclude):
        return False
    return True
