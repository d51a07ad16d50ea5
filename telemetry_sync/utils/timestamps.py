"""UTC timestamp helpers.

Stored documents use ISO 8601 strings with millisecond precision and a ``Z``
suffix (``2025-11-04T12:00:00.000Z``), and statistics partitions use
date-only strings (``2025-11-04``).
"""

import time
from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return ``dt`` as an aware UTC datetime; naive values are taken as UTC.

    Example:
        >>> ensure_utc(datetime(2025, 11, 4, 12, 0)).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_utc_day(dt: Optional[datetime] = None) -> datetime:
    """Midnight (UTC) of the day containing ``dt`` (defaults to now).

    Example:
        >>> start_of_utc_day(datetime(2025, 11, 4, 17, 45, tzinfo=timezone.utc)).isoformat()
        '2025-11-04T00:00:00+00:00'
    """
    moment = ensure_utc(dt) if dt is not None else utc_now()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_iso_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO 8601 string (``Z`` suffix or offset, date-only allowed).

    Args:
        value: String to parse; datetimes are passed through ``ensure_utc``

    Returns:
        Aware UTC datetime, or None for empty or unparseable input
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)

    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    # Graph returns 7 fractional digits, which fromisoformat rejects before 3.11.
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        while tail and tail[0].isdigit():
            digits, tail = digits + tail[0], tail[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail}"

    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        try:
            return ensure_utc(datetime.strptime(text, "%Y-%m-%d"))
        except ValueError:
            return None


def format_timestamp(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000Z'
    """
    moment = ensure_utc(dt)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def format_date(value: Union[datetime, date]) -> str:
    """Date-only ``YYYY-MM-DD`` string, computed in UTC for datetimes."""
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return value.isoformat()


def elapsed_ms(started: float) -> int:
    """Milliseconds since ``started`` (a ``time.monotonic()`` reading)."""
    return int(round((time.monotonic() - started) * 1000))
