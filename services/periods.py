# services/periods.py
from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from errors import ValidationError
from services import config

UTC = timezone.utc
PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def local_today(now: Optional[datetime] = None) -> date:
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(ZoneInfo(config.BILLING_TZ)).date()


def parse_period_key(period_key: str) -> tuple[int, int]:
    m = PERIOD_RE.match(str(period_key or ""))
    if not m:
        raise ValidationError(f"Invalid period key {period_key!r}, expected YYYY-MM")
    return int(m.group(1)), int(m.group(2))


def period_key_for(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def period_label(period_key: str) -> str:
    year, month = parse_period_key(period_key)
    return f"{calendar.month_abbr[month]} {year}"


def compute_due_date(period_key: str, due_day_of_month: int = 15, grace_days: int = 0) -> date:
    """
    Bills for YYYY-MM fall due in the following month, on `due_day_of_month`
    clamped to that month's length, pushed out by `grace_days`.
    """
    year, month = parse_period_key(period_key)
    if month == 12:
        year, month = year + 1, 1
    else:
        month += 1
    day = min(max(1, int(due_day_of_month)), calendar.monthrange(year, month)[1])
    return date(year, month, day) + timedelta(days=max(0, int(grace_days)))


def is_past_due(due_date: Optional[date], now: Optional[datetime] = None) -> bool:
    """A bill falls due at the start of its due date in the billing time zone."""
    if due_date is None:
        return False
    return local_today(now) >= due_date


def reading_window(period_key: str, start_day: int = 1, window_days: int = 7) -> tuple[date, date]:
    """Days within the period when meter readers are expected in the field."""
    year, month = parse_period_key(period_key)
    day = min(max(1, int(start_day)), calendar.monthrange(year, month)[1])
    start = date(year, month, day)
    return start, start + timedelta(days=max(1, int(window_days)) - 1)
