import math
from datetime import datetime, timedelta, timezone
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.
    All stored datetimes are naive UTC so SQLite round-trips compare cleanly.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an incoming datetime (aware or naive) to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, rounded up. Negative when end is in the past."""
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def days_before(moment: datetime, days: int) -> datetime:
    return moment - timedelta(days=days)


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; percentages round .5 up
    return int(math.floor(value + 0.5))
