from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

@dataclass(frozen=True)
class Period:
    start: date
    end: date

def today_local(timezone: Optional[str] = None) -> date:
    tz = ZoneInfo(timezone or get_settings().timezone)
    return datetime.now(tz).date()

def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def trailing_months(periods_back: int, *, today: Optional[date] = None) -> Period:
    """The current month plus the ``periods_back - 1`` months before it."""
    if periods_back < 1:
        raise ValueError("At least one month is required")
    today = today or today_local()
    first_this = today.replace(day=1)
    start = add_months(first_this, -(periods_back - 1))
    end = add_months(first_this, 1) - date.resolution
    return Period(start, end)
