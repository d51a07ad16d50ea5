"""Scheduling module for the timer-driven sync and statistics jobs."""

from .service import JOB_NAMES, SchedulerService

__all__ = [
    "SchedulerService",
    "JOB_NAMES",
]
