from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from errors import InvalidInput


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_window(year: int, month: int) -> Period:
    return Period(
        "month",
        datetime.combine(month_start(year, month), time.min),
        datetime.combine(month_end(year, month), time.max),
    )


def year_window(year: int) -> Period:
    return Period(
        "year",
        datetime.combine(date(year, 1, 1), time.min),
        datetime.combine(date(year, 12, 31), time.max),
    )


def resolve_insight_period(
    period: Optional[str], *, now: Optional[datetime] = None
) -> Period:
    """Window from the start of the current month, quarter or year up to now."""
    now = now or datetime.utcnow()
    slug = (period or "month").strip().lower()
    if slug == "year":
        start = date(now.year, 1, 1)
    elif slug == "quarter":
        first_month = ((now.month - 1) // 3) * 3 + 1
        start = date(now.year, first_month, 1)
    elif slug == "month":
        start = date(now.year, now.month, 1)
    else:
        raise InvalidInput("Period must be one of: month, quarter, year")
    return Period(slug, datetime.combine(start, time.min), now)
