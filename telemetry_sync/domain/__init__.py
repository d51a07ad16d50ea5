"""Domain models for the telemetry sync service."""

from .models import (
    MAX_SYNC_ERRORS,
    SYNC_VERSION,
    AlertStatisticsDocument,
    AttackTypeStatistics,
    CountStatistic,
    DetectionSourceStatistics,
    DeviceSyncDocument,
    DeviceSyncError,
    DeviceSyncState,
    IpThreatStatistics,
    PeriodType,
    ProcessingInfo,
    SeverityBreakdown,
    StatisticsPeriod,
    StatisticsType,
    StatusBreakdown,
    SyncMetadata,
    SyncStatus,
    UserImpactStatistics,
    device_display_name,
)

__all__ = [
    "MAX_SYNC_ERRORS",
    "SYNC_VERSION",
    "AlertStatisticsDocument",
    "AttackTypeStatistics",
    "CountStatistic",
    "DetectionSourceStatistics",
    "DeviceSyncDocument",
    "DeviceSyncError",
    "DeviceSyncState",
    "IpThreatStatistics",
    "PeriodType",
    "ProcessingInfo",
    "SeverityBreakdown",
    "StatisticsPeriod",
    "StatisticsType",
    "StatusBreakdown",
    "SyncMetadata",
    "SyncStatus",
    "UserImpactStatistics",
    "device_display_name",
]
