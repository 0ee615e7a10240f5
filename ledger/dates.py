import calendar
from datetime import date, datetime
from typing import Optional, Tuple, Union

from ledger.errors import InvalidDate

DateLike = Union[date, datetime, str]


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, months: int) -> date:
    """Shift d by whole months keeping its day, clamped to the target month's last day.

    add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    """
    index = d.year * 12 + (d.month - 1) + months
    year, month0 = divmod(index, 12)
    month = month0 + 1
    return date(year, month, min(d.day, days_in_month(year, month)))


def month_key(d: date) -> Tuple[int, int]:
    return d.year, d.month


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    if not 1 <= month <= 12:
        raise InvalidDate(f"Month must be between 1 and 12, got {month}", month=month)
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def month_label(year: int, month: int) -> str:
    return f"{calendar.month_abbr[month]} {year}"


def parse_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            # "2024-01-31" or "2024-01-31T10:00:00"
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
    raise InvalidDate(f"Cannot parse date from {value!r}", value=str(value))


def parse_optional_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None or value == "":
        return None
    return parse_date(value)


def validate_range(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and start > end:
        raise InvalidDate(
            f"Start date {start.isoformat()} is after end date {end.isoformat()}",
            start=start.isoformat(),
            end=end.isoformat(),
        )
