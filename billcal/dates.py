import calendar
from datetime import date, datetime, timedelta
from typing import Iterator, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


KEY_FORMAT = "%Y-%m-%d"
MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def canonicalize(value) -> date:
    """Reduce a date, datetime or YYYY-MM-DD key to a plain calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_key(value)
    raise TypeError(f"Cannot read a date from {value!r}")


def format_key(d: date) -> str:
    d = canonicalize(d)
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def parse_key(key: str) -> date:
    """Strict YYYY-MM-DD parse; the inverse of format_key."""
    text = key.strip() if isinstance(key, str) else key
    if not isinstance(text, str) or len(text) != 10:
        raise ValueError(f"Date must be in YYYY-MM-DD format: {key!r}")
    return datetime.strptime(text, KEY_FORMAT).date()


def days_between(a, b) -> int:
    return (canonicalize(b) - canonicalize(a)).days


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def first_of_month(d: date) -> date:
    return canonicalize(d).replace(day=1)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def add_months(d: date, n: int) -> date:
    # relativedelta clamps the day to the end of shorter months
    return canonicalize(d) + relativedelta(months=n)


def iter_days(start: date, end: date) -> Iterator[date]:
    current = canonicalize(start)
    end = canonicalize(end)
    while current <= end:
        yield current
        current += timedelta(days=1)


def parse_import_date(text: str) -> Optional[date]:
    """
    Parse a date from a bank export.

    MM/DD/YYYY is tried first, with two-digit years read as 20YY; anything
    else goes through dateutil. Returns None when nothing matches.
    """
    if not text or not text.strip():
        return None
    raw = text.strip()

    parts = raw.split("/")
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        if len(parts[2]) not in (2, 4):
            return None
        month, day, year = (int(p) for p in parts)
        if len(parts[2]) == 2:
            year += 2000
        try:
            return date(year, month, day)
        except ValueError:
            return None

    try:
        return date_parser.parse(raw).date()
    except (ValueError, OverflowError):
        return None


def format_display_date(d: date) -> str:
    d = canonicalize(d)
    return f"{MONTH_ABBR[d.month - 1]} {d.day}, {d.year}"
