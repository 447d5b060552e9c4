"""
Date helpers: local "today", reporting cadence and deadline extension math.
"""
import math
from datetime import date, datetime, timedelta
from typing import Optional
import pytz
from ..config import settings
from ..models.enums import ReportFrequency

MINUTES_PER_DAY = 24 * 60


def local_today(timezone_str: Optional[str] = None) -> date:
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return datetime.now(tz).date()


def cadence_gap(previous: date, current: date, frequency: ReportFrequency) -> int:
    """
    Days by which ``current`` is late relative to ``previous`` and the
    job's reporting frequency. 0 when on schedule.
    """
    diff_days = (current - previous).days
    return max(0, diff_days - frequency.days)


def cadence_warning(previous: Optional[date], current: date, frequency: ReportFrequency) -> Optional[str]:
    if previous is None:
        return None
    gap = cadence_gap(previous, current, frequency)
    if gap <= 0:
        return None
    return f"Previous report was {gap} day(s) behind schedule."


def extension_days(duration_minutes: int) -> int:
    # Whole days, rounded up: 4000 minutes (~2.78 days) extends by 3 days
    return math.ceil(duration_minutes / MINUTES_PER_DAY)


def extended_end_date(base: Optional[date], duration_minutes: int) -> date:
    start = base or local_today()
    return start + timedelta(days=extension_days(duration_minutes))
