"""Configuration management for the telemetry sync service."""

from .environment import EnvironmentConfig, OAuthCredentials, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_app_config, validate_config_file
from .models import (
    AdvancedConfig,
    AppConfig,
    CrossSyncConfig,
    DefenderSyncConfig,
    DeviceSyncConfig,
    IntuneSyncConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    StatisticsConfig,
    SyncSource,
)
from .schedule import ScheduleParseError, build_cron_trigger, parse_cron_schedule

__all__ = [
    # Loader functions
    "load_config",
    "parse_app_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "DeviceSyncConfig",
    "DefenderSyncConfig",
    "IntuneSyncConfig",
    "CrossSyncConfig",
    "StatisticsConfig",
    "LoggingConfig",
    "AdvancedConfig",
    "EnvironmentConfig",
    "OAuthCredentials",
    # Enums
    "SyncSource",
    "LogLevel",
    "LogFormat",
    # Schedules
    "parse_cron_schedule",
    "build_cron_trigger",
    # Exceptions
    "ConfigurationError",
    "ScheduleParseError",
]
