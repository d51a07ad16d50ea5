"""Main entry point for the Telemetry Sync service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from telemetry_sync.adapters.exceptions import InventoryConfigurationError
from telemetry_sync.config.environment import EnvironmentConfig
from telemetry_sync.config.exceptions import ConfigurationError
from telemetry_sync.config.loader import load_config, validate_config_file
from telemetry_sync.config.models import AppConfig, SyncSource
from telemetry_sync.logging import get_logger
from telemetry_sync.logging.config import configure_logging
from telemetry_sync.logging.context import log_context
from telemetry_sync.persistence.database import close_database, init_database
from telemetry_sync.pipeline import build_device_sync_pipeline, build_sync_response
from telemetry_sync.pipeline.cross_sync import build_cross_sync_response, build_cross_sync_service
from telemetry_sync.scheduler import SchedulerService
from telemetry_sync.statistics import build_statistics_pipeline

logger = get_logger(__name__, component="cli")

# CLI name -> scheduler job id
MANUAL_RUN_JOBS = {
    "defender": "defender_sync",
    "intune": "intune_sync",
    "cross-sync": "cross_sync",
    "statistics": "statistics",
}

# A job returns (succeeded, JSON payload)
JobCallable = Callable[[], Tuple[bool, Dict[str, Any]]]


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_jobs(app_config: AppConfig, env_config: EnvironmentConfig, job_ids) -> Dict[str, JobCallable]:
    """
    Build the runnable jobs named in ``job_ids``.

    Raises:
        InventoryConfigurationError: If a device sync job lacks credentials
    """
    jobs: Dict[str, JobCallable] = {}
    sample_size = app_config.advanced.error_sample_size

    for job_id in job_ids:
        if job_id in ("defender_sync", "intune_sync"):
            source = SyncSource.DEFENDER if job_id == "defender_sync" else SyncSource.INTUNE
            pipeline = build_device_sync_pipeline(source, app_config, env_config)

            def run_sync(pipeline=pipeline):
                result = pipeline.run()
                return result.success, build_sync_response(result, sample_size)

            jobs[job_id] = _with_invocation_context(job_id, run_sync)

        elif job_id == "cross_sync":
            service = build_cross_sync_service(app_config)

            def run_cross_sync(service=service):
                result = service.run()
                return result.success, build_cross_sync_response(result)

            jobs[job_id] = _with_invocation_context(job_id, run_cross_sync)

        elif job_id == "statistics":
            statistics = build_statistics_pipeline(app_config.statistics)

            def run_statistics(statistics=statistics):
                result = statistics.run()
                return result.success, result.to_response()

            jobs[job_id] = _with_invocation_context(job_id, run_statistics)

        else:
            raise ValueError(f"Unknown job: {job_id}")

    return jobs


def _with_invocation_context(job_id: str, func: JobCallable) -> JobCallable:
    def invoke():
        with log_context(function_name=job_id, invocation_id=uuid4().hex):
            return func()

    invoke.__name__ = f"run_{job_id}"
    return invoke


def main() -> int:
    """
    Main entry point for Telemetry Sync.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="Telemetry Sync - Defender/Intune device sync and alert statistics service"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--manual-run",
        choices=sorted(MANUAL_RUN_JOBS),
        default=None,
        help="Run one job immediately, print its JSON result and exit",
    )
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    args = parser.parse_args()

    if args.validate_config:
        return 0 if validate_config_file(args.config or Path("config.yaml")) else 1

    try:
        # Step 1: Load configuration early (before logging for format detection)
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        # Step 2: Configure logging
        log_format = app_config.logging.format
        configure_logging(
            level=env_config.log_level,
            format_type=log_format,
            environment=env_config.environment,
        )

        logger.info(
            "Telemetry Sync starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "manual_run": args.manual_run,
            },
        )

        # Step 3: Initialize database
        init_database(env_config.database_url)

        if args.manual_run:
            job_id = MANUAL_RUN_JOBS[args.manual_run]
            logger.info(
                f"Executing manual run of {job_id}",
                extra={"event": "service.manual_run.starting", "job_id": job_id},
            )
            job = build_jobs(app_config, env_config, [job_id])[job_id]
            succeeded, payload = job()
            print(json.dumps(payload, indent=2))

            close_database()
            logger.info(
                "Telemetry Sync stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )
            return 0 if succeeded else 1

        # Daemon mode: register every enabled job
        enabled_jobs = app_config.get_enabled_jobs()
        if not enabled_jobs:
            logger.warning(
                "No jobs enabled, nothing to schedule",
                extra={"event": "service.no_jobs"},
            )
            close_database()
            return 0

        jobs = build_jobs(app_config, env_config, enabled_jobs)
        shutdown_event = threading.Event()
        scheduler_service = SchedulerService(shutdown_event=shutdown_event)
        for job_id, schedule in enabled_jobs.items():
            scheduler_service.add_job(job_id, schedule, jobs[job_id])

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            scheduler_service.shutdown(wait=False)
            close_database()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler_service.start()

        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started", "jobs": sorted(enabled_jobs)},
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"},
            )
            scheduler_service.shutdown(wait=False)
            close_database()

        logger.info(
            "Telemetry Sync stopped",
            extra={
                "event": "service.stopping",
                "uptime_seconds": round(time.time() - start_time, 2),
            },
        )
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e.render()}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except InventoryConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Inventory client configuration error: {e}",
            extra={"event": "config.error", "error_type": "InventoryConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
