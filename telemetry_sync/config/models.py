"""Configuration schema models using Pydantic."""

from datetime import date
from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field, field_validator, model_validator

from .schedule import ScheduleParseError, parse_cron_schedule


class SyncSource(str, Enum):
    """Device inventory sources."""

    DEFENDER = "defender"
    INTUNE = "intune"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _validate_schedule(value: str) -> str:
    try:
        parse_cron_schedule(value)
    except ScheduleParseError as e:
        raise ValueError(str(e)) from e
    return " ".join(value.split())


class DeviceSyncConfig(BaseModel):
    """Settings shared by the per-source device sync jobs."""

    enabled: bool = Field(True, description="Whether the timer job is registered")
    batch_size: int = Field(100, ge=1, le=1000, description="Devices per bulk upsert")
    page_size: int = Field(100, ge=1, description="Devices requested per API page")
    schedule: str = Field("0 0 */6 * * *", description="Six-field cron schedule")
    container: str = Field(..., min_length=1, description="Target document container")

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        """Reject schedules APScheduler cannot run."""
        return _validate_schedule(v)


class DefenderSyncConfig(DeviceSyncConfig):
    """Defender for Endpoint machine sync."""

    page_size: int = Field(10000, ge=1, le=10000, description="Machines per API page")
    container: str = Field("devices_defender", min_length=1)


class IntuneSyncConfig(DeviceSyncConfig):
    """Intune managed device sync."""

    page_size: int = Field(999, ge=1, le=999, description="Managed devices per Graph page")
    container: str = Field("devices_intune", min_length=1)


class CrossSyncConfig(BaseModel):
    """Intune/Defender device matching job."""

    enabled: bool = Field(True, description="Whether the timer job is registered")
    batch_size: int = Field(100, ge=1, le=1000, description="Documents per bulk upsert")
    schedule: str = Field("0 0 6,12,18 * * *", description="Six-field cron schedule")
    container: str = Field("devices_all", min_length=1, description="Target container")

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        """Reject schedules APScheduler cannot run."""
        return _validate_schedule(v)


class StatisticsConfig(BaseModel):
    """Alert statistics generation job."""

    enabled: bool = Field(True, description="Whether the timer job is registered")
    schedule: str = Field("0 0 * * * *", description="Six-field cron schedule")
    batch_size: int = Field(100, ge=1, le=1000, description="Alerts read per page")
    top_n: int = Field(10, ge=1, le=100, description="Entries kept in top-N lists")
    historical_floor_date: date = Field(
        date(2020, 1, 1), description="First day covered by the initial run"
    )
    alerts_container: str = Field("alerts", min_length=1)
    statistics_container: str = Field("alerts_statistics", min_length=1)

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        """Reject schedules APScheduler cannot run."""
        return _validate_schedule(v)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AdvancedConfig(BaseModel):
    """Advanced runtime settings."""

    http_request_timeout: int = Field(
        60, ge=5, le=300, description="Request timeout for inventory API calls (seconds)"
    )
    user_agent: str = Field(
        "TelemetrySync/1.0",
        min_length=1,
        description="User-Agent string for HTTP requests",
    )
    max_error_entries: int = Field(
        100, ge=1, le=100, description="Error entries kept per sync run"
    )
    error_sample_size: int = Field(
        10, ge=0, le=100, description="Error entries included in trigger responses"
    )
    throttle_retry_delay: float = Field(
        2.0, ge=0, le=60, description="Wait before retrying throttled writes (seconds)"
    )

    @field_validator("user_agent")
    @classmethod
    def strip_user_agent(cls, v: str) -> str:
        """Strip whitespace from user agent."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("user_agent cannot be empty")
        return stripped

    @model_validator(mode="after")
    def validate_sample_size(self):
        """The response sample is taken from the kept errors."""
        if self.error_sample_size > self.max_error_entries:
            raise ValueError(
                f"error_sample_size ({self.error_sample_size}) cannot exceed "
                f"max_error_entries ({self.max_error_entries})"
            )
        return self


class AppConfig(BaseModel):
    """Root configuration object for the telemetry sync service."""

    defender_sync: DefenderSyncConfig = Field(default_factory=DefenderSyncConfig)
    intune_sync: IntuneSyncConfig = Field(default_factory=IntuneSyncConfig)
    cross_sync: CrossSyncConfig = Field(default_factory=CrossSyncConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    advanced: AdvancedConfig = Field(
        default_factory=AdvancedConfig, description="Advanced runtime settings"
    )

    @model_validator(mode="after")
    def validate_containers(self):
        """Each job must write to its own container."""
        targets = {
            "defender_sync": self.defender_sync.container,
            "intune_sync": self.intune_sync.container,
            "cross_sync": self.cross_sync.container,
            "statistics": self.statistics.statistics_container,
        }
        seen: Dict[str, str] = {}
        for job, container in targets.items():
            if container in seen:
                raise ValueError(
                    f"Container '{container}' is used by both {seen[container]} and {job}"
                )
            seen[container] = job
        return self

    def get_device_sync(self, source: SyncSource) -> DeviceSyncConfig:
        """Return the sync settings for ``source``."""
        if SyncSource(source) is SyncSource.DEFENDER:
            return self.defender_sync
        return self.intune_sync

    def get_enabled_jobs(self) -> Dict[str, str]:
        """Map enabled job names to their cron schedules."""
        jobs = {
            "defender_sync": self.defender_sync,
            "intune_sync": self.intune_sync,
            "cross_sync": self.cross_sync,
            "statistics": self.statistics,
        }
        return {name: job.schedule for name, job in jobs.items() if job.enabled}
