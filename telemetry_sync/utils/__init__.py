"""Time handling helpers."""

from .timestamps import (
    elapsed_ms,
    ensure_utc,
    format_date,
    format_timestamp,
    parse_iso_datetime,
    start_of_utc_day,
    utc_now,
)

__all__ = [
    "elapsed_ms",
    "ensure_utc",
    "format_date",
    "format_timestamp",
    "parse_iso_datetime",
    "start_of_utc_day",
    "utc_now",
]
