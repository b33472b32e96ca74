"""
core/durations.py -- Human-readable duration parsing for token expiry settings.

Accepts the same grammar operators are used to writing in env files:
"15m", "1h", "30d", "2.5 hrs", "500ms", "1 week". A bare number is read as
milliseconds. Units are case-insensitive and may be separated from the number
by spaces.

parse_duration() returns milliseconds (float). Token signing works in whole
seconds, so duration_to_seconds() floors the result.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import math
import re

_SECOND = 1000
_MINUTE = _SECOND * 60
_HOUR = _MINUTE * 60
_DAY = _HOUR * 24
_WEEK = _DAY * 7
_YEAR = _DAY * 365.25

_UNITS: dict[str, float] = {
    "years": _YEAR,
    "year": _YEAR,
    "yrs": _YEAR,
    "yr": _YEAR,
    "y": _YEAR,
    "weeks": _WEEK,
    "week": _WEEK,
    "w": _WEEK,
    "days": _DAY,
    "day": _DAY,
    "d": _DAY,
    "hours": _HOUR,
    "hour": _HOUR,
    "hrs": _HOUR,
    "hr": _HOUR,
    "h": _HOUR,
    "minutes": _MINUTE,
    "minute": _MINUTE,
    "mins": _MINUTE,
    "min": _MINUTE,
    "m": _MINUTE,
    "seconds": _SECOND,
    "second": _SECOND,
    "secs": _SECOND,
    "sec": _SECOND,
    "s": _SECOND,
    "milliseconds": 1,
    "millisecond": 1,
    "msecs": 1,
    "msec": 1,
    "ms": 1,
}

_DURATION_RE = re.compile(r"^(-?\d*\.?\d+) *([a-z]+)?$", re.IGNORECASE)

# Inputs longer than this are rejected before the regex runs.
_MAX_LENGTH = 100


class ConfigurationError(ValueError):
    """Raised when a configuration value cannot be interpreted."""


def parse_duration(value: str) -> float:
    """Convert a duration string such as "30d" to milliseconds.

    Raises ConfigurationError for empty, oversized or unrecognised input.
    """
    if not isinstance(value, str) or not value.strip() or len(value) > _MAX_LENGTH:
        raise ConfigurationError(f"Invalid duration format: {value!r}")
    match = _DURATION_RE.match(value.strip())
    if match is None:
        raise ConfigurationError(f"Invalid duration format: {value!r}")
    amount = float(match.group(1))
    unit = (match.group(2) or "ms").lower()
    multiplier = _UNITS.get(unit)
    if multiplier is None:
        raise ConfigurationError(f"Invalid duration unit {unit!r} in {value!r}")
    return amount * multiplier


def duration_to_seconds(value: str) -> int:
    """Parse a duration string and floor it to whole seconds."""
    return math.floor(parse_duration(value) / _SECOND)
