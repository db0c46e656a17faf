"""Timestamp helpers.

All timestamps are stored as naive UTC datetimes (the same convention as the
`DateTime` columns in touchline/models.py).
"""

from datetime import datetime, timezone
from typing import Any, Optional

from touchline.errors import TimestampParseError


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso8601(value: Any) -> datetime:
    """Parse an ISO-8601 string into a naive UTC datetime.

    Accepts what `datetime.fromisoformat` accepts on Python 3.11+ (extended and
    basic formats, fractional seconds, offsets) plus a trailing `Z`.

    Raises:
        TimestampParseError: value is not a string or does not parse
    """
    if not isinstance(value, str) or not value.strip():
        raise TimestampParseError(value)

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise TimestampParseError(value) from e

    return to_naive_utc(parsed)


def parse_iso8601_or_none(value: Any) -> Optional[datetime]:
    """Lenient variant: blank or unparseable input yields None."""
    if value in (None, ""):
        return None
    try:
        return parse_iso8601(value)
    except TimestampParseError:
        return None
