"""Unit tests for core/durations.py -- expiry string parsing.

Covers:
- Common units (ms, s, m, h, d, w, y) and their long spellings
- Bare numbers are milliseconds
- Decimals, whitespace and case-insensitivity
- Flooring to whole seconds for token signing
- ConfigurationError on anything unparseable
"""

import pytest

from core.durations import ConfigurationError, duration_to_seconds, parse_duration


@pytest.mark.parametrize(
    ("value", "expected_ms"),
    [
        ("500ms", 500),
        ("500", 500),
        ("30s", 30_000),
        ("15m", 900_000),
        ("1h", 3_600_000),
        ("30d", 30 * 86_400_000),
        ("1w", 7 * 86_400_000),
        ("1y", 365.25 * 86_400_000),
        ("2.5 hrs", 9_000_000),
        ("1 week", 7 * 86_400_000),
        ("10 Minutes", 600_000),
        ("-1h", -3_600_000),
        (".5s", 500),
    ],
)
def test_parse_duration(value, expected_ms):
    assert parse_duration(value) == pytest.approx(expected_ms)


@pytest.mark.parametrize("value", ["", "   ", "abc", "h", "10 fortnights", "1h30m", "1" * 101])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ConfigurationError):
        parse_duration(value)


def test_parse_duration_rejects_non_string():
    with pytest.raises(ConfigurationError):
        parse_duration(None)  # type: ignore[arg-type]


def test_configuration_error_is_value_error():
    """pydantic field validators only convert ValueError into ValidationError."""
    assert issubclass(ConfigurationError, ValueError)


@pytest.mark.parametrize(
    ("value", "expected_seconds"),
    [("1h", 3600), ("1500ms", 1), ("999", 0), ("30d", 2_592_000), ("2.5s", 2)],
)
def test_duration_to_seconds_floors(value, expected_seconds):
    assert duration_to_seconds(value) == expected_seconds
