"""Unit tests for the device sync pipeline.

Tests the DeviceSyncPipeline orchestration including:
- Fetch, batch upsert and finalize with fake collaborators
- Failure isolation (fetch failure, failing batch, unexpected errors)
- Status derivation and metadata bookkeeping
- Progress reporting
- End-to-end runs against the SQLite document store
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from telemetry_sync.adapters.exceptions import InventoryConfigurationError, InventoryHTTPError
from telemetry_sync.config.environment import EnvironmentConfig, OAuthCredentials
from telemetry_sync.config.models import AppConfig, SyncSource
from telemetry_sync.domain.models import MAX_SYNC_ERRORS, SyncMetadata, SyncStatus
from telemetry_sync.persistence import DocumentRepository, DocumentStore, get_session
from telemetry_sync.persistence.exceptions import PersistenceError
from telemetry_sync.pipeline import (
    BatchUpsertEngine,
    DeviceSyncPipeline,
    SyncMetadataStore,
    SyncPhase,
    build_device_sync_pipeline,
    derive_status,
)
from telemetry_sync.pipeline.metadata import DEFENDER_METADATA_ID, INTUNE_METADATA_ID
from tests.helpers import (
    FakeDocumentStore,
    FakeInventoryClient,
    InMemoryMetadataStore,
    make_devices,
)


def make_pipeline(
    client,
    store=None,
    metadata_store=None,
    batch_size=2,
    source=SyncSource.DEFENDER,
):
    store = store if store is not None else FakeDocumentStore()
    engine = BatchUpsertEngine(store, batch_size=batch_size, sleep=lambda seconds: None)
    metadata_store = metadata_store or InMemoryMetadataStore()
    return DeviceSyncPipeline(source, client, engine, metadata_store), store, metadata_store


# ============================================================================
# Status Derivation
# ============================================================================


class TestDeriveStatus:
    """Tests for the status rule."""

    @pytest.mark.parametrize(
        "processed,failed,fetched,expected",
        [
            (10, 0, 10, SyncStatus.SUCCESS),
            (0, 0, 0, SyncStatus.SUCCESS),
            (7, 3, 10, SyncStatus.PARTIAL),
            (0, 10, 10, SyncStatus.FAILED),
            (0, 0, 5, SyncStatus.FAILED),
        ],
    )
    def test_status(self, processed, failed, fetched, expected):
        assert derive_status(processed, failed, fetched) is expected


# ============================================================================
# Device Sync Pipeline
# ============================================================================


class TestDeviceSyncPipeline:
    """Tests for DeviceSyncPipeline.run."""

    def test_successful_run(self):
        client = FakeInventoryClient(make_devices(5), pages=3, api_calls=4, request_time_ms=300)
        pipeline, store, metadata_store = make_pipeline(client)

        result = pipeline.run()

        assert result.success is True
        assert result.status is SyncStatus.SUCCESS
        assert result.total_devices_fetched == 5
        assert result.devices_processed == 5
        assert result.devices_failed == 0
        assert result.errors == []
        assert result.graph_api_metrics.calls == 4
        assert result.graph_api_metrics.pages == 3
        assert result.graph_api_metrics.average_request_time_ms == 100
        assert result.cosmos_db_metrics.writes == 5
        assert store.bulk_calls == [2, 2, 1]

        metadata = metadata_store.writes[-1]
        assert metadata.id == DEFENDER_METADATA_ID
        assert metadata.last_sync_status is SyncStatus.SUCCESS
        assert metadata.devices_processed == 5
        assert metadata.graph_api_pages == 3
        assert metadata.cosmos_db_writes == 5
        assert metadata.last_sync_end_time >= metadata.last_sync_start_time

    def test_failing_batch_gives_partial(self):
        """Test 4 devices, batch size 2, second batch raising."""
        client = FakeInventoryClient(make_devices(4))
        pipeline, store, metadata_store = make_pipeline(
            client, store=FakeDocumentStore(failing_calls={2})
        )

        result = pipeline.run()

        assert result.devices_processed == 2
        assert result.devices_failed == 2
        assert result.status is SyncStatus.PARTIAL
        assert result.success is True
        assert [error.device_id for error in result.errors] == ["batch_2"]
        assert metadata_store.writes[-1].last_sync_status is SyncStatus.PARTIAL

    def test_fetch_failure(self):
        """Test that a failed fetch ends the run before any write."""
        error = InventoryHTTPError("HTTP 503: Service Unavailable", status_code=503, url="https://x")
        client = FakeInventoryClient(error=error)
        store = Mock()
        pipeline, _, metadata_store = make_pipeline(client, store=store)

        result = pipeline.run()

        assert result.success is False
        assert result.status is SyncStatus.FAILED
        assert (result.devices_processed, result.devices_failed, result.total_devices_fetched) == (0, 0, 0)
        assert [e.device_id for e in result.errors] == ["defender_api_fetch"]
        assert result.errors[0].error == "HTTP 503: Service Unavailable"
        store.bulk_upsert.assert_not_called()

        metadata = metadata_store.writes[-1]
        assert metadata.last_sync_status is SyncStatus.FAILED
        assert metadata.total_devices_fetched == 0
        assert [e.device_id for e in metadata.errors] == ["sync_failure"]

    def test_intune_fetch_failure_error_id(self):
        client = FakeInventoryClient(error=RuntimeError("graph down"))
        pipeline, _, _ = make_pipeline(
            client,
            metadata_store=InMemoryMetadataStore(INTUNE_METADATA_ID),
            source=SyncSource.INTUNE,
        )

        result = pipeline.run()

        assert [e.device_id for e in result.errors] == ["intune_api_fetch"]

    def test_empty_inventory(self):
        """Test that an empty fetch is a success and still writes metadata."""
        store = Mock()
        pipeline, _, metadata_store = make_pipeline(FakeInventoryClient([]), store=store)

        result = pipeline.run()

        assert result.status is SyncStatus.SUCCESS
        assert result.success is True
        assert (result.devices_processed, result.devices_failed, result.total_devices_fetched) == (0, 0, 0)
        store.bulk_upsert.assert_not_called()
        assert len(metadata_store.writes) == 1

    def test_all_items_failing(self):
        devices = make_devices(3)
        store = FakeDocumentStore(item_statuses={d["id"]: 500 for d in devices})
        pipeline, _, _ = make_pipeline(FakeInventoryClient(devices), store=store)

        result = pipeline.run()

        assert result.status is SyncStatus.FAILED
        assert result.success is False
        assert result.devices_failed == 3

    def test_counts_add_up_to_fetched(self):
        devices = make_devices(9)
        store = FakeDocumentStore(failing_calls={2}, item_statuses={"dev-9": 409})
        pipeline, _, _ = make_pipeline(FakeInventoryClient(devices), store=store, batch_size=4)

        result = pipeline.run()

        assert result.devices_processed + result.devices_failed == result.total_devices_fetched
        assert store.bulk_calls == [4, 4, 1]

    def test_error_list_never_exceeds_cap(self):
        devices = make_devices(250)
        store = FakeDocumentStore(item_statuses={d["id"]: 500 for d in devices})
        pipeline, _, metadata_store = make_pipeline(
            FakeInventoryClient(devices), store=store, batch_size=100
        )

        result = pipeline.run()

        assert result.devices_failed == 250
        assert len(result.errors) == MAX_SYNC_ERRORS
        assert len(metadata_store.writes[-1].errors) == MAX_SYNC_ERRORS

    def test_previous_sync_snapshot(self):
        previous_end = datetime(2025, 11, 4, 6, tzinfo=timezone.utc)
        previous = SyncMetadata(
            id=DEFENDER_METADATA_ID,
            last_sync_start_time=previous_end - timedelta(minutes=1),
            last_sync_end_time=previous_end,
            devices_processed=42,
            total_devices_fetched=42,
        )
        pipeline, _, metadata_store = make_pipeline(
            FakeInventoryClient(make_devices(1)),
            metadata_store=InMemoryMetadataStore(initial=previous),
        )

        pipeline.run()

        metadata = metadata_store.writes[-1]
        assert metadata.previous_sync_time == previous_end
        assert metadata.previous_device_count == 42
        assert metadata.devices_processed == 1

    def test_metadata_write_failure_does_not_change_result(self):
        metadata_store = InMemoryMetadataStore(put_error=PersistenceError("database is locked"))
        pipeline, _, _ = make_pipeline(
            FakeInventoryClient(make_devices(3)), metadata_store=metadata_store
        )

        result = pipeline.run()

        assert result.status is SyncStatus.SUCCESS
        assert result.devices_processed == 3
        assert result.errors == []

    def test_invalid_metadata_does_not_change_result(self):
        """Test that a metadata record that fails validation is logged, not raised."""
        pipeline, store, metadata_store = make_pipeline(FakeInventoryClient(make_devices(3)))

        with patch(
            "telemetry_sync.pipeline.runner.SyncMetadata",
            side_effect=ValueError("devices_processed must be >= 0"),
        ):
            result = pipeline.run()

        assert result.success is True
        assert result.status is SyncStatus.SUCCESS
        assert result.devices_processed == 3
        assert result.errors == []
        assert store.bulk_calls == [2, 1]
        assert metadata_store.writes == []

    def test_invalid_failure_metadata_keeps_fetch_error(self):
        client = FakeInventoryClient(error=RuntimeError("graph down"))
        pipeline, _, metadata_store = make_pipeline(client)

        with patch(
            "telemetry_sync.pipeline.runner.SyncMetadata",
            side_effect=ValueError("invalid metadata"),
        ):
            result = pipeline.run()

        assert result.status is SyncStatus.FAILED
        assert [e.device_id for e in result.errors] == ["defender_api_fetch"]
        assert result.errors[0].error == "graph down"
        assert metadata_store.writes == []

    def test_unexpected_error_becomes_failed_result(self):
        """Test that an error outside fetch and batches never escapes run()."""
        pipeline, _, metadata_store = make_pipeline(FakeInventoryClient(make_devices(4)))

        with patch.object(pipeline.engine, "upsert_all", side_effect=RuntimeError("engine crashed")):
            result = pipeline.run()

        assert result.success is False
        assert result.status is SyncStatus.FAILED
        assert result.total_devices_fetched == 4
        assert result.errors[0].device_id == "sync_service"
        assert result.errors[0].error == "engine crashed"
        assert metadata_store.writes[-1].last_sync_status is SyncStatus.FAILED

    def test_unreadable_metadata_does_not_block_sync(self):
        """Test that a sync still fetches and writes when the last record cannot be read."""
        client = FakeInventoryClient(make_devices(2))
        metadata_store = InMemoryMetadataStore(unreadable=True)
        pipeline, store, _ = make_pipeline(client, metadata_store=metadata_store)

        result = pipeline.run()

        assert result.status is SyncStatus.SUCCESS
        assert result.devices_processed == 2
        assert client.fetch_calls == 1
        assert store.bulk_calls == [2]
        assert metadata_store.read_failures == 1
        assert metadata_store.writes[-1].previous_device_count == 0

    def test_progress_callback(self):
        events = []
        pipeline, _, _ = make_pipeline(FakeInventoryClient(make_devices(5)))

        pipeline.run(progress_callback=events.append)

        assert [event.phase for event in events] == [
            SyncPhase.FETCHING,
            SyncPhase.UPSERTING,
            SyncPhase.UPSERTING,
            SyncPhase.UPSERTING,
        ]
        assert [(e.batch_number, e.total_batches, e.devices_processed) for e in events[1:]] == [
            (1, 3, 0),
            (2, 3, 2),
            (3, 3, 4),
        ]
        assert all(event.total_devices == 5 for event in events[1:])

    def test_raising_progress_callback_is_ignored(self):
        callback = Mock(side_effect=RuntimeError("observer broke"))
        pipeline, _, _ = make_pipeline(FakeInventoryClient(make_devices(3)))

        result = pipeline.run(progress_callback=callback)

        assert result.status is SyncStatus.SUCCESS
        assert result.devices_processed == 3
        assert callback.call_count == 3

    def test_idempotent_runs(self):
        """Test that re-running an unchanged inventory gives the same counts."""
        client = FakeInventoryClient(make_devices(7))
        pipeline, store, _ = make_pipeline(client, batch_size=3)

        first = pipeline.run()
        second = pipeline.run()

        assert (first.devices_processed, first.devices_failed) == (7, 0)
        assert (second.devices_processed, second.devices_failed) == (7, 0)
        assert len(store.documents) == 7


# ============================================================================
# End-to-end against the document store
# ============================================================================


class TestDeviceSyncPipelineWithDatabase:
    """Runs the pipeline against the SQLite document store."""

    def test_sync_persists_devices_and_metadata(self, temp_database):
        store = DocumentStore("devices_defender")
        engine = BatchUpsertEngine(store, batch_size=2)
        metadata_store = SyncMetadataStore(DEFENDER_METADATA_ID)
        pipeline = DeviceSyncPipeline(
            SyncSource.DEFENDER, FakeInventoryClient(make_devices(5)), engine, metadata_store
        )

        first = pipeline.run()
        second = pipeline.run()

        assert first.status is SyncStatus.SUCCESS
        assert (second.devices_processed, second.devices_failed) == (5, 0)
        assert len(store.read_all()) == 5

        metadata = metadata_store.get()
        assert metadata.devices_processed == 5
        assert metadata.previous_device_count == 5
        assert metadata.total_ru_consumed == 0.0

    def test_corrupt_metadata_is_replaced(self, temp_database):
        """Test that an invalid stored record is overwritten by the next sync."""
        with get_session() as session:
            DocumentRepository(session, "sync_metadata").upsert(
                {"id": DEFENDER_METADATA_ID, "devicesProcessed": 5, "totalDevicesFetched": 0}
            )

        client = FakeInventoryClient(make_devices(3))
        store = DocumentStore("devices_defender")
        metadata_store = SyncMetadataStore(DEFENDER_METADATA_ID)
        pipeline = DeviceSyncPipeline(
            SyncSource.DEFENDER, client, BatchUpsertEngine(store, batch_size=2), metadata_store
        )

        results = [pipeline.run() for _ in range(3)]

        assert [result.status for result in results] == [SyncStatus.SUCCESS] * 3
        assert client.fetch_calls == 3
        assert len(store.read_all()) == 3

        metadata = metadata_store.get()
        assert metadata.last_sync_status is SyncStatus.SUCCESS
        assert metadata.devices_processed == 3
        assert metadata.previous_device_count == 3


class TestBuildDeviceSyncPipeline:
    """Tests for build_device_sync_pipeline wiring."""

    def _env(self, complete=True):
        credentials = OAuthCredentials(
            tenant_id="tenant-1" if complete else "",
            client_id="client-1" if complete else "",
            client_secret="secret-1" if complete else "",
            scope="https://graph.microsoft.com/.default",
        )
        return EnvironmentConfig(graph_credentials=credentials, defender_credentials=credentials)

    def test_wires_configured_values(self):
        app_config = AppConfig.model_validate(
            {
                "intune_sync": {"batch_size": 25, "container": "managed_devices"},
                "advanced": {"throttle_retry_delay": 3},
            }
        )

        pipeline = build_device_sync_pipeline(SyncSource.INTUNE, app_config, self._env())

        assert pipeline.source is SyncSource.INTUNE
        assert pipeline.fetch_error_id == "intune_api_fetch"
        assert pipeline.engine.batch_size == 25
        assert pipeline.engine.throttle_retry_delay == 3.0
        assert pipeline.engine.store.container == "managed_devices"
        assert pipeline.metadata_store.metadata_id == INTUNE_METADATA_ID

    def test_missing_credentials(self):
        with pytest.raises(InventoryConfigurationError):
            build_device_sync_pipeline(SyncSource.DEFENDER, AppConfig(), self._env(complete=False))
