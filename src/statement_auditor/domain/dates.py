import calendar
from collections.abc import Iterator
from datetime import date, timedelta


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield every day from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping to the last day of the target month."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def previous_month(day: date) -> tuple[date, date]:
    last = month_start(day) - timedelta(days=1)
    return month_start(last), last


def month_key(day: date) -> tuple[int, int]:
    return day.year, day.month


def is_month_end(day: date, within_days: int = 2) -> bool:
    return (month_end(day) - day).days <= within_days


def business_days_between(start: date, end: date) -> int:
    """
    Count weekdays in (start, end]. Negative when end is before start.
    Public holidays are not modelled.
    """
    if end == start:
        return 0
    if end < start:
        return -business_days_between(end, start)
    return sum(1 for day in date_range(start + timedelta(days=1), end) if day.weekday() < 5)


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"
