"""Month key helpers. Keys are `YYYY-MM` strings and sort chronologically."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    year, month = key.split("-")
    return int(year), int(month)


def first_instant(key: str) -> datetime:
    """Midnight UTC on the first day of the month."""
    year, month = parse_month_key(key)
    return datetime(year, month, 1, tzinfo=timezone.utc)


def add_months(key: str, count: int) -> str:
    year, month = parse_month_key(key)
    index = year * 12 + (month - 1) + count
    return f"{index // 12:04d}-{index % 12 + 1:02d}"
