"""Device sync orchestration: fetch an inventory and persist it in batches."""

import time
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from telemetry_sync.adapters.factory import get_inventory_client
from telemetry_sync.config.environment import EnvironmentConfig
from telemetry_sync.config.models import AppConfig, SyncSource
from telemetry_sync.domain.models import DeviceSyncError, SyncMetadata, SyncStatus
from telemetry_sync.logging import get_logger
from telemetry_sync.logging.context import log_context
from telemetry_sync.persistence.stores import DocumentStore
from telemetry_sync.utils.timestamps import elapsed_ms, utc_now

from .batching import BatchUpsertEngine, count_batches
from .metadata import DEFENDER_METADATA_ID, INTUNE_METADATA_ID, SyncMetadataStore
from .models import (
    BatchUpsertResult,
    CosmosDbMetrics,
    GraphApiMetrics,
    SyncPhase,
    SyncProgress,
    SyncResult,
)

logger = get_logger(__name__, component="sync")

ProgressCallback = Callable[[SyncProgress], None]

SYNC_FAILURE_ERROR_ID = "sync_failure"
SYNC_SERVICE_ERROR_ID = "sync_service"

FETCH_ERROR_IDS = {
    SyncSource.DEFENDER: "defender_api_fetch",
    SyncSource.INTUNE: "intune_api_fetch",
}
METADATA_IDS = {
    SyncSource.DEFENDER: DEFENDER_METADATA_ID,
    SyncSource.INTUNE: INTUNE_METADATA_ID,
}


def derive_status(devices_processed: int, devices_failed: int, total_devices_fetched: int) -> SyncStatus:
    """Status of a finished run from its counters alone."""
    if devices_processed == 0 and total_devices_fetched > 0:
        return SyncStatus.FAILED
    if devices_failed == 0:
        return SyncStatus.SUCCESS
    return SyncStatus.PARTIAL


class DeviceSyncPipeline:
    """
    Synchronizes one device inventory into its container.

    A run moves through fetch, upsert and finalize. A failed fetch ends the
    run before anything is written; a failing batch only fails its own
    devices. The run never raises: every outcome is reported as a SyncResult
    and recorded in the source's metadata record.
    """

    def __init__(
        self,
        source: SyncSource,
        client,
        engine: BatchUpsertEngine,
        metadata_store: SyncMetadataStore,
        fetch_error_id: Optional[str] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            source: Which inventory this pipeline syncs
            client: Inventory client exposing ``fetch_all()``
            engine: Batch writer for the device container
            metadata_store: Singleton metadata record of the source
            fetch_error_id: Error id reported when the fetch fails
        """
        self.source = SyncSource(source)
        self.client = client
        self.engine = engine
        self.metadata_store = metadata_store
        self.fetch_error_id = fetch_error_id or FETCH_ERROR_IDS[self.source]

    def run(self, progress_callback: Optional[ProgressCallback] = None) -> SyncResult:
        """
        Execute one sync of the inventory.

        Args:
            progress_callback: Optional observer notified before the fetch
                and before every batch; its exceptions are logged and ignored

        Returns:
            SyncResult describing the run
        """
        started = time.monotonic()
        start_time = utc_now()
        run_id = uuid4().hex

        graph_metrics = GraphApiMetrics()
        upsert_result = BatchUpsertResult()
        total_fetched = 0

        with log_context(run_id=run_id, sync_source=self.source.value):
            try:
                previous = self.metadata_store.get()
                logger.info(
                    f"{self.source.value} sync started",
                    extra={
                        "event": "sync.run.started",
                        "batch_size": self.engine.batch_size,
                        "previous_sync_time": previous.last_sync_end_time.isoformat(),
                        "previous_status": previous.last_sync_status.value,
                        "previous_device_count": previous.devices_processed,
                    },
                )

                self._notify(progress_callback, SyncProgress(phase=SyncPhase.FETCHING))

                try:
                    fetched = self.client.fetch_all()
                except Exception as e:
                    return self._fetch_failed(e, start_time, started, previous)

                devices = fetched.devices
                total_fetched = len(devices)
                graph_metrics = GraphApiMetrics(
                    calls=fetched.api_calls,
                    pages=fetched.pages,
                    total_request_time_ms=fetched.total_request_time_ms,
                )

                if devices:
                    total_batches = count_batches(total_fetched, self.engine.batch_size)
                    logger.info(
                        f"Upserting {total_fetched} devices in {total_batches} batches",
                        extra={
                            "event": "sync.upsert.started",
                            "total_devices": total_fetched,
                            "total_batches": total_batches,
                        },
                    )

                    def on_batch_start(batch_number: int, batches: int, processed: int) -> None:
                        self._notify(
                            progress_callback,
                            SyncProgress(
                                phase=SyncPhase.UPSERTING,
                                devices_processed=processed,
                                total_devices=total_fetched,
                                batch_number=batch_number,
                                total_batches=batches,
                            ),
                        )

                    upsert_result = self.engine.upsert_all(devices, on_batch_start=on_batch_start)
                else:
                    logger.warning(
                        f"No devices returned from {self.source.value} inventory",
                        extra={"event": "sync.fetch.empty"},
                    )

                return self._finalize(
                    start_time, started, previous, total_fetched, graph_metrics, upsert_result
                )

            except Exception as e:
                return self._unexpected_failure(
                    e, start_time, started, total_fetched, graph_metrics, upsert_result
                )

    def _finalize(
        self,
        start_time: datetime,
        started: float,
        previous: SyncMetadata,
        total_fetched: int,
        graph_metrics: GraphApiMetrics,
        upsert_result: BatchUpsertResult,
    ) -> SyncResult:
        status = derive_status(
            upsert_result.success_count, upsert_result.failure_count, total_fetched
        )
        execution_time_ms = elapsed_ms(started)
        cosmos_metrics = CosmosDbMetrics(
            writes=upsert_result.success_count,
            total_ru_consumed=upsert_result.total_ru_consumed,
        )

        log_method = logger.info if status is SyncStatus.SUCCESS else logger.warning
        log_method(
            f"{self.source.value} sync completed with status {status.value}",
            extra={
                "event": "sync.run.completed",
                "status": status.value,
                "total_devices_fetched": total_fetched,
                "devices_processed": upsert_result.success_count,
                "devices_failed": upsert_result.failure_count,
                "error_count": len(upsert_result.errors),
                "duration_ms": execution_time_ms,
            },
        )

        def build_metadata() -> SyncMetadata:
            end_time = utc_now()
            return SyncMetadata(
                id=self.metadata_store.metadata_id,
                last_sync_start_time=start_time,
                last_sync_end_time=end_time,
                last_sync_status=status,
                devices_processed=upsert_result.success_count,
                devices_failed=upsert_result.failure_count,
                total_devices_fetched=total_fetched,
                execution_time_ms=execution_time_ms,
                errors=upsert_result.errors,
                graph_api_calls=graph_metrics.calls,
                graph_api_pages=graph_metrics.pages,
                total_request_time_ms=graph_metrics.total_request_time_ms,
                cosmos_db_writes=cosmos_metrics.writes,
                total_ru_consumed=cosmos_metrics.total_ru_consumed,
                previous_sync_time=previous.last_sync_end_time,
                previous_device_count=previous.devices_processed,
                updated_at=end_time,
            )

        self._write_metadata(build_metadata)

        return SyncResult(
            success=status is not SyncStatus.FAILED,
            status=status,
            devices_processed=upsert_result.success_count,
            devices_failed=upsert_result.failure_count,
            total_devices_fetched=total_fetched,
            execution_time_ms=execution_time_ms,
            errors=list(upsert_result.errors),
            graph_api_metrics=graph_metrics,
            cosmos_db_metrics=cosmos_metrics,
        )

    def _fetch_failed(
        self,
        error: Exception,
        start_time: datetime,
        started: float,
        previous: SyncMetadata,
    ) -> SyncResult:
        logger.error(
            f"Failed to fetch {self.source.value} inventory: {error}",
            extra={
                "event": "sync.fetch.failed",
                "error_type": type(error).__name__,
                "status_code": getattr(error, "status_code", None),
            },
            exc_info=True,
        )
        self._write_metadata(
            lambda: self._failure_metadata(start_time, started, previous, error)
        )

        return SyncResult(
            success=False,
            status=SyncStatus.FAILED,
            execution_time_ms=elapsed_ms(started),
            errors=[
                DeviceSyncError(
                    device_id=self.fetch_error_id,
                    error=str(error) or f"Failed to fetch devices from {self.source.value}",
                )
            ],
        )

    def _unexpected_failure(
        self,
        error: Exception,
        start_time: datetime,
        started: float,
        total_fetched: int,
        graph_metrics: GraphApiMetrics,
        upsert_result: BatchUpsertResult,
    ) -> SyncResult:
        logger.error(
            f"Unexpected error during {self.source.value} sync: {error}",
            extra={
                "event": "sync.run.failed",
                "error_type": type(error).__name__,
                "devices_processed": upsert_result.success_count,
                "devices_failed": upsert_result.failure_count,
            },
            exc_info=True,
        )

        try:
            previous = self.metadata_store.get()
            self.metadata_store.put(self._failure_metadata(start_time, started, previous, error))
        except Exception as metadata_error:
            logger.error(
                f"Failed to record sync failure in metadata: {metadata_error}",
                extra={"event": "sync.metadata.write_failed", "error_type": type(metadata_error).__name__},
            )

        errors: List[DeviceSyncError] = [
            DeviceSyncError(
                device_id=SYNC_SERVICE_ERROR_ID,
                error=str(error) or "Unexpected error during synchronization",
            )
        ]
        errors.extend(upsert_result.errors)

        return SyncResult(
            success=False,
            status=SyncStatus.FAILED,
            devices_processed=upsert_result.success_count,
            devices_failed=upsert_result.failure_count,
            total_devices_fetched=total_fetched,
            execution_time_ms=elapsed_ms(started),
            errors=errors,
            graph_api_metrics=graph_metrics,
            cosmos_db_metrics=CosmosDbMetrics(
                writes=upsert_result.success_count,
                total_ru_consumed=upsert_result.total_ru_consumed,
            ),
        )

    def _failure_metadata(
        self,
        start_time: datetime,
        started: float,
        previous: SyncMetadata,
        error: Exception,
    ) -> SyncMetadata:
        end_time = utc_now()
        return SyncMetadata(
            id=self.metadata_store.metadata_id,
            last_sync_start_time=start_time,
            last_sync_end_time=end_time,
            last_sync_status=SyncStatus.FAILED,
            execution_time_ms=elapsed_ms(started),
            errors=[
                DeviceSyncError(
                    device_id=SYNC_FAILURE_ERROR_ID,
                    error=str(error) or "Synchronization failed",
                    timestamp=end_time,
                )
            ],
            previous_sync_time=previous.last_sync_end_time,
            previous_device_count=previous.devices_processed,
            updated_at=end_time,
        )

    def _write_metadata(self, build: Callable[[], SyncMetadata]) -> None:
        """Build and store the run's metadata; failures are logged, never raised."""
        try:
            metadata = build()
            self.metadata_store.put(metadata)
        except Exception as e:
            logger.error(
                f"Failed to update sync metadata: {e}",
                extra={"event": "sync.metadata.write_failed", "error_type": type(e).__name__},
                exc_info=True,
            )
        else:
            logger.debug(
                "Sync metadata updated",
                extra={"event": "sync.metadata.updated", "status": metadata.last_sync_status.value},
            )

    def _notify(self, callback: Optional[ProgressCallback], progress: SyncProgress) -> None:
        if callback is None:
            return
        try:
            callback(progress)
        except Exception as e:
            logger.warning(
                f"Progress callback raised: {e}",
                extra={"event": "sync.progress.callback_failed", "error_type": type(e).__name__},
            )


def build_device_sync_pipeline(
    source: SyncSource,
    app_config: AppConfig,
    env_config: EnvironmentConfig,
) -> DeviceSyncPipeline:
    """
    Wire the inventory client, store and metadata record of ``source``.

    Raises:
        InventoryConfigurationError: If the source's credentials are missing
    """
    source = SyncSource(source)
    sync_config = app_config.get_device_sync(source)
    advanced = app_config.advanced

    client = get_inventory_client(source, sync_config, advanced, env_config)
    engine = BatchUpsertEngine(
        DocumentStore(sync_config.container),
        batch_size=sync_config.batch_size,
        max_errors=advanced.max_error_entries,
        throttle_retry_delay=advanced.throttle_retry_delay,
    )
    return DeviceSyncPipeline(
        source,
        client,
        engine,
        SyncMetadataStore(METADATA_IDS[source]),
    )
