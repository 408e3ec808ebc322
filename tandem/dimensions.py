"""
tandem.dimensions
=================

Calendar buckets and day counters used for partnership reporting.

Everything here is a pure function of its arguments; the only place a
wall clock is read is :pyfunc:`utcnow`, which callers pass in explicitly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class TimeDimensions:
    year: int
    quarter: int
    month: int


def utcnow() -> datetime:
    """Timezone‑aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def derive_time_dimensions(created_at: datetime) -> TimeDimensions:
    """
    Return the (year, quarter, month) bucket of *created_at*.

    Examples
    --------
    >>> derive_time_dimensions(datetime(2024, 5, 17))
    TimeDimensions(year=2024, quarter=2, month=5)
    """
    month0 = created_at.month - 1
    return TimeDimensions(
        year=created_at.year,
        quarter=month0 // 3 + 1,
        month=month0 + 1,
    )


def days_between(start: datetime, end: datetime) -> int:
    """
    Whole days from *start* to *end*, rounded to the nearest day.

    Halves round up (towards +∞), so 1.5 days → 2 and -0.5 days → 0.
    """
    days = (end - start).total_seconds() / _SECONDS_PER_DAY
    return math.floor(days + 0.5)
