"""Month helpers. Months are "YYYY-MM" strings throughout the package."""

import datetime
from typing import Optional


def is_valid_month(month: str) -> bool:
    try:
        datetime.datetime.strptime(str(month).strip(), "%Y-%m")
    except ValueError:
        return False
    return len(str(month).strip()) == 7


def month_of(date_str: str) -> Optional[str]:
    """Month of an ISO date string, or None when the date cannot be parsed."""
    try:
        d = datetime.date.fromisoformat(str(date_str).strip())
    except ValueError:
        return None
    return f"{d.year:04d}-{d.month:02d}"


def first_day(month: str) -> str:
    return f"{month}-01"


def _shift(month: str, delta: int) -> str:
    d = datetime.datetime.strptime(month, "%Y-%m")
    index = d.year * 12 + (d.month - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def previous_month(month: str) -> str:
    return _shift(month, -1)


def next_month(month: str) -> str:
    return _shift(month, 1)


def current_month() -> str:
    return datetime.date.today().strftime("%Y-%m")
