"""Time helpers for calendar days, ISO weeks and local dates."""

from __future__ import annotations

import datetime as dt
from typing import Iterator, Optional

import pandas as pd


def today_local() -> dt.date:
    return dt.date.today()


def iso_week_start(d: dt.date) -> dt.date:
    # Monday is 1, Sunday is 7
    return d - dt.timedelta(days=d.isoweekday() - 1)


def to_date(value: object) -> Optional[dt.date]:
    """Parse a date, datetime, Timestamp or ISO string into a calendar date."""
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(ts):
        return None
    return ts.date()


def local_date(value: object, tz: Optional[str] = None) -> Optional[dt.date]:
    """Calendar day of a start timestamp in the athlete's local time.

    Naive timestamps are taken as already local. Aware timestamps are
    converted to ``tz`` when given, otherwise to the system local zone.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        return ts.date()
    if tz:
        return ts.tz_convert(tz).date()
    return ts.to_pydatetime().astimezone().date()


def day_range(start: dt.date, end: dt.date) -> Iterator[dt.date]:
    """Yield every calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += dt.timedelta(days=1)
