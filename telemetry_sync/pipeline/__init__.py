"""Device sync orchestration: inventory fetch, batched upserts, metadata and cross sync."""

from .batching import BatchUpsertEngine, ErrorCollector, create_batches
from .cross_sync import DeviceCrossSyncService, build_cross_sync_service, match_devices
from .metadata import DEFENDER_METADATA_ID, INTUNE_METADATA_ID, SyncMetadataStore
from .models import (
    BatchUpsertResult,
    CosmosDbMetrics,
    CrossSyncResult,
    GraphApiMetrics,
    SyncPhase,
    SyncProgress,
    SyncResult,
)
from .reporting import build_sync_response
from .runner import DeviceSyncPipeline, build_device_sync_pipeline, derive_status

__all__ = [
    "DeviceSyncPipeline",
    "build_device_sync_pipeline",
    "derive_status",
    "BatchUpsertEngine",
    "ErrorCollector",
    "create_batches",
    "SyncMetadataStore",
    "DEFENDER_METADATA_ID",
    "INTUNE_METADATA_ID",
    "DeviceCrossSyncService",
    "build_cross_sync_service",
    "match_devices",
    "build_sync_response",
    "SyncResult",
    "SyncProgress",
    "SyncPhase",
    "BatchUpsertResult",
    "GraphApiMetrics",
    "CosmosDbMetrics",
    "CrossSyncResult",
]
