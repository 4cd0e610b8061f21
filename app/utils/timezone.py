# FILE: app/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


def now_ist() -> datetime:
    """
    Returns a *naive* datetime representing IST time.
    This avoids SQLAlchemy/MySQL issues when your DateTime columns are naive.
    """
    return datetime.now(IST).replace(tzinfo=None)


def today_ist() -> date:
    return now_ist().date()


def start_of_day(d: date) -> datetime:
    return datetime(d.year, d.month, d.day)


def month_bounds_ist(ref: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """[first instant of the month, first instant of next month) in naive IST."""
    now = ref or now_ist()
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        nxt = datetime(now.year + 1, 1, 1)
    else:
        nxt = datetime(now.year, now.month + 1, 1)
    return start, nxt


def one_month_back(ref: datetime) -> datetime:
    """Same day-of-month one month earlier, clamped to the month's last day."""
    year, month = (ref.year, ref.month - 1) if ref.month > 1 else (ref.year - 1, 12)
    first_of_ref_month = datetime(ref.year, ref.month, 1)
    last_day_prev = (first_of_ref_month - timedelta(days=1)).day
    return ref.replace(year=year, month=month, day=min(ref.day, last_day_prev))
