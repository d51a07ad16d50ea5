"""Data models for device sync execution tracking and reporting."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from telemetry_sync.domain.models import DeviceSyncError, SyncStatus


class SyncPhase(str, Enum):
    """Stage of a sync run reported to progress observers."""

    FETCHING = "fetching"
    UPSERTING = "upserting"


@dataclass
class SyncProgress:
    """
    Snapshot handed to the optional progress callback.

    Attributes:
        phase: Current stage of the run
        devices_processed: Devices written successfully so far
        total_devices: Devices fetched (0 while fetching)
        batch_number: 1-based number of the batch about to be written
        total_batches: Number of batches in this run
    """

    phase: SyncPhase
    devices_processed: int = 0
    total_devices: int = 0
    batch_number: int = 0
    total_batches: int = 0


@dataclass
class BatchUpsertResult:
    """
    Outcome of writing a list of devices batch by batch.

    Attributes:
        success_count: Devices written successfully
        failure_count: Devices that failed, including devices of failed batches
        total_ru_consumed: Store-reported cost of all writes
        errors: Captured errors, at most the configured cap
    """

    success_count: int = 0
    failure_count: int = 0
    total_ru_consumed: float = 0.0
    errors: List[DeviceSyncError] = field(default_factory=list)


@dataclass
class GraphApiMetrics:
    """Request metrics of the inventory fetch."""

    calls: int = 0
    pages: int = 0
    total_request_time_ms: int = 0

    @property
    def average_request_time_ms(self) -> float:
        return self.total_request_time_ms / self.pages if self.pages else 0.0


@dataclass
class CosmosDbMetrics:
    """Write metrics of the upsert phase."""

    writes: int = 0
    total_ru_consumed: float = 0.0

    @property
    def average_ru_per_write(self) -> float:
        return self.total_ru_consumed / self.writes if self.writes else 0.0


@dataclass
class SyncResult:
    """
    Aggregate result of one device sync run.

    Attributes:
        success: False only when the run ended in ``failed``
        status: Derived run status
        devices_processed: Devices written successfully
        devices_failed: Devices that could not be written
        total_devices_fetched: Devices returned by the inventory
        execution_time_ms: Wall-clock duration of the run
        errors: Captured errors (capped)
        graph_api_metrics: Fetch metrics
        cosmos_db_metrics: Write metrics
    """

    success: bool
    status: SyncStatus
    devices_processed: int = 0
    devices_failed: int = 0
    total_devices_fetched: int = 0
    execution_time_ms: int = 0
    errors: List[DeviceSyncError] = field(default_factory=list)
    graph_api_metrics: GraphApiMetrics = field(default_factory=GraphApiMetrics)
    cosmos_db_metrics: CosmosDbMetrics = field(default_factory=CosmosDbMetrics)


@dataclass
class CrossSyncResult:
    """Outcome of pairing the Intune and Defender inventories."""

    success: bool
    intune_devices: int = 0
    defender_devices: int = 0
    matched: int = 0
    only_intune: int = 0
    only_defender: int = 0
    documents_written: int = 0
    documents_failed: int = 0
    execution_time_ms: int = 0
    errors: List[DeviceSyncError] = field(default_factory=list)
    error: Optional[str] = None
