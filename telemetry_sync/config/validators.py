"""Non-fatal configuration checks."""

import warnings
from typing import Any, Dict, List

JOB_SECTIONS = ("defender_sync", "intune_sync", "cross_sync", "statistics")


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Inspect the raw configuration for settings that are valid but suspicious.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    messages = []

    sections = {name: config_dict.get(name) or {} for name in JOB_SECTIONS}
    disabled = [
        name for name, section in sections.items()
        if isinstance(section, dict) and section.get("enabled") is False
    ]
    for name in disabled:
        messages.append(f"Job '{name}' is disabled and will not be scheduled")
    if len(disabled) == len(JOB_SECTIONS):
        messages.append("All jobs are disabled; only --manual-run will do any work")

    for name in ("defender_sync", "intune_sync", "cross_sync"):
        section = sections[name]
        if isinstance(section, dict):
            batch_size = section.get("batch_size")
            if isinstance(batch_size, int) and batch_size > 500:
                messages.append(
                    f"Large {name}.batch_size ({batch_size}) increases the number of "
                    "devices failed by a single bulk write error"
                )

    statistics = sections["statistics"]
    if isinstance(statistics, dict):
        schedule = statistics.get("schedule")
        if isinstance(schedule, str) and schedule.split()[:1] == ["*"]:
            messages.append(
                f"statistics.schedule ({schedule}) fires every second"
            )

    return messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message as a ``UserWarning``."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
