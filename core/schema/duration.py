"""Parsing of Go-style duration strings ("1h30m", "90s", "0")."""

import re
from datetime import timedelta
from typing import Optional, Union

from core.config.exceptions import ConfigValidationError

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float, timedelta, None]) -> Optional[timedelta]:
    """
    Parse a duration.

    Accepts Go duration strings ("1h", "1m30s", "0s"), bare numbers
    (seconds) and ``timedelta`` instances. ``None`` stays ``None``.

    Raises:
        ConfigValidationError: If the value is not a valid, non-negative duration
    """
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigValidationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigValidationError(f"Duration must not be negative: {value}")
        return timedelta(seconds=value)

    text = str(value).strip()
    if not text:
        raise ConfigValidationError("Empty duration")
    if text == "0":
        return timedelta(0)
    if text.startswith("-"):
        raise ConfigValidationError(f"Duration must not be negative: {text}")

    seconds = 0.0
    pos = 0
    for match in _PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ConfigValidationError(f"Invalid duration: {text!r}")

    return timedelta(seconds=seconds)


def format_duration(value: timedelta) -> str:
    """Format a timedelta back to a compact Go-style string."""
    total = int(value.total_seconds())
    if total == 0:
        return "0s"
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    out = ""
    if hours:
        out += f"{hours}h"
    if minutes:
        out += f"{minutes}m"
    if seconds:
        out += f"{seconds}s"
    return out
