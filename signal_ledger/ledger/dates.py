"""
DateKey helpers — calendar days serialized as ``YYYY-MM-DD``.

Normalized keys sort lexically in chronological order, so the ledger can
order its day records with a plain ``sorted()``.
"""

from __future__ import annotations
import re
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

from signal_ledger.utils.exceptions import InvalidDateKeyError

DateLike = Union[str, date, datetime]

_KEY_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$")


def parse_date_key(value: DateLike) -> date:
    """Parse a DateKey (or loose ``YYYY-M-D`` / ``YYYY/M/D``) into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidDateKeyError(value)
    text = value.strip()
    m = _KEY_RE.match(text)
    if not m:
        # Accept full ISO timestamps such as exportedAt values
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            raise InvalidDateKeyError(value) from None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        raise InvalidDateKeyError(value) from None


def normalize_date_key(value: DateLike) -> str:
    return parse_date_key(value).isoformat()


def is_date_key(value: object) -> bool:
    try:
        parse_date_key(value)  # type: ignore[arg-type]
    except InvalidDateKeyError:
        return False
    return True


def today_key(today: Optional[DateLike] = None) -> str:
    if today is None:
        return date.today().isoformat()
    return normalize_date_key(today)


def add_days(key: DateLike, n: int) -> str:
    return (parse_date_key(key) + timedelta(days=n)).isoformat()


def days_between(start: DateLike, end: DateLike) -> int:
    """Calendar days from ``start`` to ``end`` (negative when end is earlier)."""
    return (parse_date_key(end) - parse_date_key(start)).days


def date_range(start: DateLike, end: DateLike) -> Iterator[str]:
    """Inclusive iterator of DateKeys from start to end."""
    current = parse_date_key(start)
    last = parse_date_key(end)
    while current <= last:
        yield current.isoformat()
        current += timedelta(days=1)


def month_key(key: DateLike) -> str:
    return normalize_date_key(key)[:7]
