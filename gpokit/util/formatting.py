"""
Formatting helpers for console output and generated names.
"""

import secrets
import string
from datetime import timedelta

BYTE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB", "EB"]


def format_bytes(size: int | float, precision: int = 2) -> str:
    """
    Format a byte count using the largest binary unit that keeps the value >= 1.

    Args:
        size: Number of bytes (must not be negative)
        precision: Decimal places for units above bytes

    Returns:
        Human readable size such as "512 B" or "1.50 MB"

    Example:
        >>> format_bytes(1536)
        '1.50 KB'
    """
    if size < 0:
        raise ValueError(f"Size must not be negative: {size}")
    if precision < 0:
        raise ValueError(f"Precision must not be negative: {precision}")

    exponent = 0
    while exponent < len(BYTE_UNITS) - 1 and size >= 1024 ** (exponent + 1):
        exponent += 1

    if exponent == 0:
        return f"{int(size)} B"

    value = round(size / 1024**exponent, precision)
    return f"{value:.{precision}f} {BYTE_UNITS[exponent]}"


def random_alpha(
    length: int,
    lowercase: bool = True,
    uppercase: bool = True,
    digits: bool = False,
) -> str:
    """
    Generate a random string drawn from the requested character classes.

    Args:
        length: Exact length of the result
        lowercase: Include a-z
        uppercase: Include A-Z
        digits: Include 0-9

    Returns:
        Random string of `length` characters
    """
    if length < 0:
        raise ValueError(f"Length must not be negative: {length}")

    alphabet = ""
    if lowercase:
        alphabet += string.ascii_lowercase
    if uppercase:
        alphabet += string.ascii_uppercase
    if digits:
        alphabet += string.digits
    if not alphabet:
        raise ValueError("At least one character class must be requested")

    return "".join(secrets.choice(alphabet) for _ in range(length))


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_timespan(span: timedelta) -> str:
    """
    Describe a time span in words, e.g. "1 hour, 5 minutes and 3 seconds".

    Sub-second remainders are dropped. A zero span gives an empty string.
    """
    total = int(span.total_seconds())
    if total < 0:
        raise ValueError(f"Time span must not be negative: {span}")

    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = [
        _plural(value, unit)
        for value, unit in (
            (days, "day"),
            (hours, "hour"),
            (minutes, "minute"),
            (seconds, "second"),
        )
        if value
    ]

    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + " and " + parts[-1]
