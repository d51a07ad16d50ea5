"""Six-field cron schedule parsing for the sync and statistics timers."""

from typing import Dict

from apscheduler.triggers.cron import CronTrigger

CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")


class ScheduleParseError(ValueError):
    """Raised when a cron schedule string cannot be parsed."""

    pass


def parse_cron_schedule(expression: str) -> Dict[str, str]:
    """
    Split a six-field cron expression into named fields.

    The field order is ``second minute hour day month day_of_week``, the same
    layout used by timer-triggered functions. Numeric ``day_of_week`` values
    follow APScheduler numbering (0 = Monday); names such as ``mon-fri`` are
    unambiguous and preferred.

    Args:
        expression: Cron expression, e.g. "0 0 */6 * * *"

    Returns:
        Mapping of CronTrigger keyword argument to field value

    Raises:
        ScheduleParseError: If the expression does not have six fields or a
            field is rejected by APScheduler

    Examples:
        >>> parse_cron_schedule("0 0 6,12,18 * * *")["hour"]
        '6,12,18'
    """
    if not expression or not expression.strip():
        raise ScheduleParseError("Schedule cannot be empty")

    parts = expression.split()
    if len(parts) != len(CRON_FIELDS):
        raise ScheduleParseError(
            f"Invalid schedule '{expression}': expected 6 fields "
            "(second minute hour day month day_of_week), "
            f"got {len(parts)}"
        )

    fields = dict(zip(CRON_FIELDS, parts))
    try:
        CronTrigger(timezone="UTC", **fields)
    except ValueError as e:
        raise ScheduleParseError(f"Invalid schedule '{expression}': {e}") from e
    return fields


def build_cron_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """Build an APScheduler CronTrigger from a six-field expression."""
    return CronTrigger(timezone=timezone, **parse_cron_schedule(expression))
