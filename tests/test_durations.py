from datetime import timedelta

import pytest

from coreresolver.durations import parse_duration


@pytest.mark.parametrize(
    "text, expected",
    [
        ("500ms", timedelta(milliseconds=500)),
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("1h", timedelta(hours=1)),
        ("  10s  ", timedelta(seconds=10)),
        ("+3s", timedelta(seconds=3)),
    ],
)
def test_valid_durations(text, expected):
    assert parse_duration(text) == expected


def test_hours_rejected_when_not_allowed():
    with pytest.raises(ValueError):
        parse_duration("1h", allow_hours=False)


def test_minutes_still_accepted_without_hours():
    assert parse_duration("2m", allow_hours=False) == timedelta(minutes=2)


@pytest.mark.parametrize("text", ["", "abc", "-5s", "1.5s", "10", "s", "xms", "1hs"])
def test_invalid_durations(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_ms_suffix_checked_before_seconds():
    assert parse_duration("250ms") < parse_duration("1s")