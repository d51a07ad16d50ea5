"""Tests for the per-source sync metadata record."""

from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from telemetry_sync.domain.models import SyncMetadata, SyncStatus
from telemetry_sync.persistence import DocumentRepository, get_session
from telemetry_sync.persistence.exceptions import DatabaseConnectionError
from telemetry_sync.pipeline.metadata import (
    DEFENDER_METADATA_ID,
    INTUNE_METADATA_ID,
    SyncMetadataStore,
)


def finished_metadata(metadata_id: str, processed: int = 5) -> SyncMetadata:
    moment = datetime(2025, 11, 4, 6, tzinfo=timezone.utc)
    return SyncMetadata(
        id=metadata_id,
        last_sync_start_time=moment,
        last_sync_end_time=moment,
        last_sync_status=SyncStatus.SUCCESS,
        devices_processed=processed,
        total_devices_fetched=processed,
    )


class TestSyncMetadataStore:
    """Tests for SyncMetadataStore get/put."""

    def test_first_run_returns_initial_metadata(self, temp_database):
        metadata = SyncMetadataStore(DEFENDER_METADATA_ID).get()

        assert metadata.id == DEFENDER_METADATA_ID
        assert metadata.devices_processed == 0
        assert metadata.last_sync_status is SyncStatus.SUCCESS

    def test_put_then_get(self, temp_database):
        store = SyncMetadataStore(DEFENDER_METADATA_ID)

        store.put(finished_metadata(DEFENDER_METADATA_ID, processed=12))

        assert store.get().devices_processed == 12

    def test_put_normalizes_id(self, temp_database):
        """Test that a caller-supplied id is replaced by the singleton key."""
        store = SyncMetadataStore(INTUNE_METADATA_ID)

        saved = store.put(finished_metadata("something-else"))

        assert saved.id == INTUNE_METADATA_ID
        assert store.get().devices_processed == 5
        with get_session() as session:
            assert DocumentRepository(session, "sync_metadata").get_by_id("something-else") is None

    def test_put_overwrites_singleton(self, temp_database):
        store = SyncMetadataStore(DEFENDER_METADATA_ID)

        store.put(finished_metadata(DEFENDER_METADATA_ID, processed=1))
        store.put(finished_metadata(DEFENDER_METADATA_ID, processed=2))

        assert store.get().devices_processed == 2
        with get_session() as session:
            assert DocumentRepository(session, "sync_metadata").count() == 1

    def test_sources_have_separate_records(self, temp_database):
        SyncMetadataStore(DEFENDER_METADATA_ID).put(finished_metadata(DEFENDER_METADATA_ID, 7))

        assert SyncMetadataStore(INTUNE_METADATA_ID).get().devices_processed == 0

    def test_invalid_record_reads_as_initial(self, temp_database):
        """Test that a record that no longer validates does not block reads."""
        with get_session() as session:
            DocumentRepository(session, "sync_metadata").upsert(
                {"id": DEFENDER_METADATA_ID, "devicesProcessed": 5, "totalDevicesFetched": 0}
            )
        store = SyncMetadataStore(DEFENDER_METADATA_ID)

        metadata = store.get()

        assert metadata.id == DEFENDER_METADATA_ID
        assert metadata.devices_processed == 0

        store.put(finished_metadata(DEFENDER_METADATA_ID, processed=4))
        assert store.get().devices_processed == 4

    def test_database_error_reads_as_initial(self):
        def broken_session():
            raise OperationalError("SELECT", {}, Exception("no such table: documents"))

        metadata = SyncMetadataStore(INTUNE_METADATA_ID, session_scope=broken_session).get()

        assert metadata.id == INTUNE_METADATA_ID
        assert metadata.total_devices_fetched == 0

    def test_uninitialized_database_reads_as_initial(self):
        def no_database():
            raise DatabaseConnectionError("Database not initialized")

        metadata = SyncMetadataStore(DEFENDER_METADATA_ID, session_scope=no_database).get()

        assert metadata.devices_processed == 0
