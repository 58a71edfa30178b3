"""Datetime helpers shared by ledger and stock services."""
from datetime import datetime, date, time
from typing import Optional, Union

from backoffice.exceptions import InvalidInputError

DateLike = Union[datetime, date, str, None]


def now() -> datetime:
    """Server-side 'now' (naive, local time like the rest of the stored timestamps)."""
    return datetime.now()


def to_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert to local time and strip tzinfo so aware and naive values compare.

    Postgres returns aware datetimes for timezone=True columns, SQLite returns
    naive ones.
    """
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)


def _parse(value: DateLike):
    """str -> date or naive datetime; anything else is returned unchanged."""
    if not isinstance(value, str):
        return value

    s = value.strip()
    if not s:
        return None
    if s.endswith('Z'):
        s = s[:-1] + '+00:00'
    try:
        if len(s) == 10:
            return date.fromisoformat(s)
        return datetime.fromisoformat(s)
    except ValueError:
        raise InvalidInputError(f'Fecha inválida: {value}')


def parse_datetime(value: DateLike, end_of_day: bool = False) -> Optional[datetime]:
    """
    Normalize a date filter value to a naive datetime.

    - None / "" -> None
    - date (or "YYYY-MM-DD") -> 00:00:00, or 23:59:59.999999 when end_of_day
    - datetime / ISO-8601 string -> as is ("Z" accepted)

    Raises InvalidInputError for strings that are not ISO dates.
    """
    value = _parse(value)
    if value is None:
        return None

    if isinstance(value, datetime):
        return to_naive(value)

    return datetime.combine(value, time.max if end_of_day else time.min)


def posting_datetime(value: DateLike) -> datetime:
    """
    Timestamp of a ledger posting.

    None posts now; a bare date posts on that day at the current time of day,
    so a payment dated today sorts after this morning's movements.
    """
    value = _parse(value)
    if value is None:
        return now()

    if isinstance(value, datetime):
        return to_naive(value)

    return datetime.combine(value, now().time())
