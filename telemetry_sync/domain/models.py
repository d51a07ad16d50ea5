"""Core domain models for sync state and alert statistics.

This module defines the documents the service reads and writes:
- SyncMetadata: singleton record describing the last device sync of a source
- DeviceSyncError: one captured failure inside a sync run
- StatisticsPeriod: time window covered by a statistics run
- AlertStatisticsDocument: one aggregate per statistics type and period
- DeviceSyncDocument: Intune/Defender pairing produced by the cross sync

Stored documents use camelCase keys; Python code uses the snake_case field
names. ``to_document()`` produces the stored form and ``model_validate``
accepts either spelling.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from telemetry_sync.utils.timestamps import ensure_utc, format_timestamp, utc_now

SYNC_VERSION = "1.0.0"
MAX_SYNC_ERRORS = 100


class SyncStatus(str, Enum):
    """Outcome of a device sync run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class PeriodType(str, Enum):
    """Granularity label of a statistics period."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class StatisticsType(str, Enum):
    """Kinds of alert statistics documents."""

    DETECTION_SOURCE = "detectionSource"
    USER_IMPACT = "userImpact"
    IP_THREATS = "ipThreats"
    ATTACK_TYPES = "attackTypes"


class DeviceSyncState(str, Enum):
    """Which inventories a device was found in during the cross sync."""

    MATCHED = "matched"
    ONLY_INTUNE = "only_intune"
    ONLY_DEFENDER = "only_defender"


class DocumentModel(BaseModel):
    """Base for models persisted as camelCase JSON documents."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the stored (camelCase, JSON-safe) representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value)


class DeviceSyncError(DocumentModel):
    """A failure recorded during a sync run.

    ``device_id`` is either a real device id or a synthetic marker such as
    ``batch_3`` or ``defender_api_fetch``.
    """

    device_id: str
    device_name: Optional[str] = None
    error: str
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)

    @field_serializer("timestamp", when_used="json")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)


class SyncMetadata(DocumentModel):
    """Singleton record of the most recent sync of one device source.

    Counters and metrics describe the last run only; they are reset on every
    run. ``previous_sync_time`` and ``previous_device_count`` snapshot the
    record as it was when that run started.
    """

    id: str
    last_sync_start_time: datetime
    last_sync_end_time: datetime
    last_sync_status: SyncStatus = SyncStatus.SUCCESS

    devices_processed: int = Field(0, ge=0)
    devices_failed: int = Field(0, ge=0)
    total_devices_fetched: int = Field(0, ge=0)
    execution_time_ms: int = Field(0, ge=0)

    errors: List[DeviceSyncError] = Field(default_factory=list, max_length=MAX_SYNC_ERRORS)

    graph_api_calls: int = Field(0, ge=0)
    graph_api_pages: int = Field(0, ge=0)
    total_request_time_ms: int = Field(0, ge=0)
    cosmos_db_writes: int = Field(0, ge=0)
    total_ru_consumed: float = Field(0.0, ge=0)

    previous_sync_time: Optional[datetime] = None
    previous_device_count: Optional[int] = None

    sync_version: str = SYNC_VERSION
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator(
        "last_sync_start_time", "last_sync_end_time", "previous_sync_time", "updated_at"
    )
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store every timestamp as aware UTC."""
        return _utc(v)

    @model_validator(mode="after")
    def validate_counts(self):
        """Processed and failed devices are a subset of the fetched ones."""
        if self.devices_processed + self.devices_failed > self.total_devices_fetched:
            raise ValueError(
                "devices_processed + devices_failed "
                f"({self.devices_processed} + {self.devices_failed}) exceeds "
                f"total_devices_fetched ({self.total_devices_fetched})"
            )
        return self

    @field_serializer(
        "last_sync_start_time",
        "last_sync_end_time",
        "previous_sync_time",
        "updated_at",
        when_used="json",
    )
    def _serialize_timestamps(self, value: Optional[datetime]) -> Optional[str]:
        return format_timestamp(value) if value is not None else None

    @classmethod
    def initial(cls, metadata_id: str) -> "SyncMetadata":
        """Zero-valued metadata used before the first sync has completed."""
        now = utc_now()
        return cls(
            id=metadata_id,
            last_sync_start_time=now,
            last_sync_end_time=now,
            updated_at=now,
        )


class StatisticsPeriod(DocumentModel):
    """Inclusive time window for a statistics run.

    Dates are ISO 8601 strings; a failed statistics run reports empty strings.
    """

    start_date: str
    end_date: str
    period_type: PeriodType

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}

    @property
    def start_day(self) -> str:
        """``YYYY-MM-DD`` part of ``start_date``."""
        return self.start_date[:10]

    @property
    def end_day(self) -> str:
        """``YYYY-MM-DD`` part of ``end_date``."""
        return self.end_date[:10]


class CountStatistic(DocumentModel):
    """One entry of a top-N list."""

    value: str
    count: int
    percentage: float


class DetectionSourceStatistics(DocumentModel):
    """Alert counts per detection product."""

    microsoft_defender_for_endpoint: int = 0
    microsoft_defender_for_office365: int = 0
    microsoft_defender_for_cloud_apps: int = 0
    microsoft_defender_for_identity: int = 0
    azure_ad_identity_protection: int = 0
    antivirus: int = 0
    custom: int = 0
    other: int = 0
    total: int = 0


class UserImpactStatistics(DocumentModel):
    """Users named in alert evidence."""

    top_users: List[CountStatistic] = Field(default_factory=list)
    total_unique_users: int = 0
    total_alerts: int = 0
    users_with_multiple_alerts: int = 0
    users_with_critical_alerts: int = 0


class IpThreatStatistics(DocumentModel):
    """IP addresses and domains named in alert evidence."""

    top_threat_ips: List[CountStatistic] = Field(default_factory=list)
    top_domains: List[CountStatistic] = Field(default_factory=list)
    total_unique_ips: int = 0
    total_unique_domains: int = 0
    total_alerts: int = 0
    ips_with_multiple_alerts: int = 0


class SeverityBreakdown(DocumentModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    informational: int = 0
    total: int = 0


class StatusBreakdown(DocumentModel):
    new: int = 0
    in_progress: int = 0
    resolved: int = 0
    total: int = 0


class AttackTypeStatistics(DocumentModel):
    """Severity, status, category, MITRE technique and threat family breakdowns."""

    by_severity: SeverityBreakdown = Field(default_factory=SeverityBreakdown)
    by_category: List[CountStatistic] = Field(default_factory=list)
    by_mitre_technique: List[CountStatistic] = Field(default_factory=list)
    by_threat_family: List[CountStatistic] = Field(default_factory=list)
    by_status: StatusBreakdown = Field(default_factory=StatusBreakdown)


class ProcessingInfo(DocumentModel):
    total_alerts_processed: int = 0
    processing_time_ms: int = 0
    is_initial_run: bool = False
    last_processed_alert_date: Optional[str] = None


_STATS_FIELD_BY_TYPE = {
    StatisticsType.DETECTION_SOURCE: "detection_source_stats",
    StatisticsType.USER_IMPACT: "user_impact_stats",
    StatisticsType.IP_THREATS: "ip_threat_stats",
    StatisticsType.ATTACK_TYPES: "attack_type_stats",
}


class AlertStatisticsDocument(DocumentModel):
    """Aggregate statistics of one type over one period.

    The id is derived from the type and the date parts of the period, so
    regenerating the same period overwrites the previous document.
    """

    id: str
    period_start_date: str
    type: StatisticsType
    period: StatisticsPeriod
    generated_at: datetime = Field(default_factory=utc_now)

    detection_source_stats: Optional[DetectionSourceStatistics] = None
    user_impact_stats: Optional[UserImpactStatistics] = None
    ip_threat_stats: Optional[IpThreatStatistics] = None
    attack_type_stats: Optional[AttackTypeStatistics] = None

    processing_info: ProcessingInfo = Field(default_factory=ProcessingInfo)

    @model_validator(mode="after")
    def validate_stats_block(self):
        """Exactly the block matching ``type`` must be present."""
        expected = _STATS_FIELD_BY_TYPE[self.type]
        present = [name for name in _STATS_FIELD_BY_TYPE.values() if getattr(self, name) is not None]
        if present != [expected]:
            raise ValueError(
                f"Statistics document of type '{self.type.value}' must carry only "
                f"'{to_camel(expected)}', found: {[to_camel(name) for name in present]}"
            )
        return self

    @field_serializer("generated_at", when_used="json")
    def _serialize_generated_at(self, value: datetime) -> str:
        return format_timestamp(value)

    @staticmethod
    def build_id(statistics_type: StatisticsType, period: StatisticsPeriod) -> str:
        """``{type}_{YYYY-MM-DD}_{YYYY-MM-DD}`` for the given period."""
        return f"{StatisticsType(statistics_type).value}_{period.start_day}_{period.end_day}"

    @property
    def statistics(self) -> DocumentModel:
        """The populated statistics block."""
        return getattr(self, _STATS_FIELD_BY_TYPE[self.type])


class DeviceSyncDocument(DocumentModel):
    """Pairing of an Intune managed device with a Defender machine."""

    id: str
    sync_key: str
    sync_state: DeviceSyncState
    sync_timestamp: datetime = Field(default_factory=utc_now)
    intune: Optional[Dict[str, Any]] = None
    defender: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_state(self):
        """The embedded devices must agree with ``sync_state``."""
        has_intune = self.intune is not None
        has_defender = self.defender is not None
        expected = {
            DeviceSyncState.MATCHED: (True, True),
            DeviceSyncState.ONLY_INTUNE: (True, False),
            DeviceSyncState.ONLY_DEFENDER: (False, True),
        }[self.sync_state]
        if (has_intune, has_defender) != expected:
            raise ValueError(
                f"sync_state '{self.sync_state.value}' does not match embedded devices "
                f"(intune={has_intune}, defender={has_defender})"
            )
        return self

    @field_serializer("sync_timestamp", when_used="json")
    def _serialize_sync_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)


def device_display_name(record: Dict[str, Any]) -> Optional[str]:
    """Best human-readable name of a Defender machine or Intune device."""
    return record.get("computerDnsName") or record.get("deviceName")
