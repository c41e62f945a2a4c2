from datetime import date, datetime, timezone

import pytest

from errors import ValidationError
from services.periods import compute_due_date, is_past_due, parse_period_key, period_label, reading_window


@pytest.mark.parametrize(
    "period_key, due_day, grace, expected",
    [
        ("2026-01", 15, 0, date(2026, 2, 15)),
        ("2026-01", 31, 0, date(2026, 2, 28)),
        ("2024-01", 31, 0, date(2024, 2, 29)),
        ("2025-12", 15, 0, date(2026, 1, 15)),
        ("2026-03", 31, 0, date(2026, 4, 30)),
        ("2026-01", 15, 5, date(2026, 2, 20)),
        ("2026-01", 28, 3, date(2026, 3, 3)),
    ],
)
def test_compute_due_date(period_key, due_day, grace, expected):
    assert compute_due_date(period_key, due_day, grace) == expected


@pytest.mark.parametrize("bad", ["2026-13", "2026-00", "2026-1", "26-01", "", "2026/01"])
def test_invalid_period_key(bad):
    with pytest.raises(ValidationError):
        parse_period_key(bad)


def test_period_label():
    assert period_label("2026-03") == "Mar 2026"


def test_past_due_from_start_of_due_date():
    due = date(2026, 2, 15)
    # Manila is UTC+8: 15:30 UTC on the 14th is still the 14th locally, 16:30 UTC is the 15th
    assert not is_past_due(due, datetime(2026, 2, 14, 15, 30, tzinfo=timezone.utc))
    assert is_past_due(due, datetime(2026, 2, 14, 16, 30, tzinfo=timezone.utc))
    assert is_past_due(due, datetime(2026, 2, 15, 10, 0, tzinfo=timezone.utc))
    assert not is_past_due(None, datetime(2030, 1, 1, tzinfo=timezone.utc))


def test_reading_window():
    assert reading_window("2026-02", 25, 7) == (date(2026, 2, 25), date(2026, 3, 3))
