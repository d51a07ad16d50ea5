"""Scheduler service for the timer-driven sync and statistics jobs."""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from telemetry_sync.config.schedule import build_cron_trigger
from telemetry_sync.logging import get_logger

logger = get_logger(__name__, component="scheduler")

JOB_NAMES = {
    "defender_sync": "Defender device sync",
    "intune_sync": "Intune managed device sync",
    "cross_sync": "Device cross sync",
    "statistics": "Alert statistics generation",
}


class SchedulerService:
    """
    Wraps APScheduler to run each job on its own cron schedule.

    Uses BackgroundScheduler to run jobs in a separate thread while
    allowing the main thread to handle signals and coordinate shutdown.
    A job never overlaps with itself; different jobs may run concurrently.
    """

    def __init__(
        self,
        shutdown_event: Optional[threading.Event] = None,
        misfire_grace_time: int = 300,
    ):
        """
        Initialize the scheduler service.

        Args:
            shutdown_event: Optional event to set on shutdown for coordination
            misfire_grace_time: Seconds a delayed run may still start
        """
        self.shutdown_event = shutdown_event
        self._jobs: Dict[str, Callable[[], object]] = {}

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # Prevent overlapping runs of one job
                "coalesce": True,  # If runs were missed, only execute once
                "misfire_grace_time": misfire_grace_time,
            },
            timezone=timezone.utc,
        )

    def add_job(self, job_id: str, schedule: str, func: Callable[[], object]) -> None:
        """
        Register ``func`` under ``job_id`` on a six-field cron schedule.

        Raises:
            ScheduleParseError: If the schedule is invalid
        """
        trigger = build_cron_trigger(schedule)
        self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=JOB_NAMES.get(job_id, job_id),
            replace_existing=True,
        )
        self._jobs[job_id] = func
        logger.info(
            f"Registered job {job_id} with schedule '{schedule}'",
            extra={"event": "scheduler.job.registered", "job_id": job_id, "schedule": schedule},
        )

    def start(self) -> None:
        """Start the scheduler; jobs first fire at their next cron time."""
        self.scheduler.start()

        next_run_times = {}
        for job_id in sorted(self._jobs):
            next_run = self.get_next_run_time(job_id)
            next_run_times[job_id] = next_run.isoformat() if next_run else None

        logger.info(
            f"Scheduler started with {len(self._jobs)} jobs",
            extra={"event": "scheduler.started", "next_run_times": next_run_times},
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={
                "event": "scheduler.stopping",
                "wait_for_jobs": wait,
            },
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self, job_id: str) -> object:
        """
        Run a registered job immediately in the current thread.

        Raises:
            KeyError: If no job is registered under ``job_id``
        """
        logger.info(
            f"Triggering immediate run of {job_id}",
            extra={"event": "scheduler.trigger_now", "job_id": job_id},
        )
        return self._jobs[job_id]()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str) -> Optional[datetime]:
        """
        Get the next scheduled run time of ``job_id``.

        Returns:
            Next run time as a datetime, or None if not scheduled
        """
        job = self.scheduler.get_job(job_id)
        return getattr(job, "next_run_time", None) if job else None
