"""Unit tests for persistence layer."""

from datetime import datetime, timedelta, timezone

import pytest

from telemetry_sync.domain.models import (
    AlertStatisticsDocument,
    DetectionSourceStatistics,
    PeriodType,
    StatisticsPeriod,
    StatisticsType,
    SyncMetadata,
    UserImpactStatistics,
)
from telemetry_sync.persistence import (
    AlertEventRepository,
    AlertStatisticsRepository,
    DatabaseConnectionError,
    DataIntegrityError,
    DocumentRepository,
    DocumentStore,
    PersistenceError,
    StatisticsQueryFilter,
    SyncMetadataRepository,
    close_database,
    get_engine,
    get_session,
    init_database,
)
from telemetry_sync.persistence.database import _redact_url
from telemetry_sync.utils.timestamps import format_timestamp


def make_statistics(
    statistics_type: StatisticsType,
    start: str,
    end: str,
    period_type: PeriodType = PeriodType.DAILY,
    generated_at: datetime = None,
) -> AlertStatisticsDocument:
    period = StatisticsPeriod(start_date=start, end_date=end, period_type=period_type)
    blocks = {
        StatisticsType.DETECTION_SOURCE: {"detection_source_stats": DetectionSourceStatistics(total=1)},
        StatisticsType.USER_IMPACT: {"user_impact_stats": UserImpactStatistics(total_alerts=1)},
    }
    return AlertStatisticsDocument(
        id=AlertStatisticsDocument.build_id(statistics_type, period),
        period_start_date=period.start_day,
        type=statistics_type,
        period=period,
        generated_at=generated_at or datetime(2025, 11, 4, 12, tzinfo=timezone.utc),
        **blocks[statistics_type],
    )


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_success(self, tmp_path):
        """Test successful database initialization."""
        db_file = tmp_path / "test.db"

        init_database(f"sqlite:///{db_file}")

        assert db_file.exists()
        with get_session() as session:
            assert session is not None

        close_database()

    def test_init_database_creates_parent_directories(self, tmp_path):
        """Test initialization creates parent directories if missing."""
        db_file = tmp_path / "subdir" / "nested" / "test.db"

        init_database(f"sqlite:///{db_file}")

        assert db_file.parent.exists()
        close_database()

    def test_empty_url_rejected(self):
        with pytest.raises(DatabaseConnectionError):
            init_database("")

    def test_session_before_init(self):
        """Test that sessions cannot be opened before init_database()."""
        close_database()

        with pytest.raises(DatabaseConnectionError, match="not initialized"):
            with get_session():
                pass

        with pytest.raises(DatabaseConnectionError):
            get_engine()

    def test_close_database_twice(self, temp_database):
        close_database()
        close_database()

    def test_session_rolls_back_on_error(self, temp_database):
        with pytest.raises(RuntimeError):
            with get_session() as session:
                DocumentRepository(session, "devices_defender").upsert({"id": "dev-1"})
                raise RuntimeError("boom")

        with get_session() as session:
            assert DocumentRepository(session, "devices_defender").get_by_id("dev-1") is None

    def test_redact_url(self):
        assert _redact_url("postgresql://sync:hunter2@db:5432/telemetry") == (
            "postgresql://sync:***@db:5432/telemetry"
        )
        assert _redact_url("sqlite:///./data/telemetry_sync.db") == "sqlite:///./data/telemetry_sync.db"


class TestDocumentRepository:
    """Tests for DocumentRepository."""

    def test_upsert_creates_then_replaces(self, temp_database):
        with get_session() as session:
            repo = DocumentRepository(session, "devices_defender")

            assert repo.upsert({"id": "dev-1", "osPlatform": "Windows10"}) is True
            assert repo.upsert({"id": "dev-1", "osPlatform": "Windows11"}) is False

            assert repo.get_by_id("dev-1") == {"id": "dev-1", "osPlatform": "Windows11"}
            assert repo.count() == 1

    def test_upsert_without_id(self, temp_database):
        with get_session() as session:
            with pytest.raises(DataIntegrityError):
                DocumentRepository(session, "devices_defender").upsert({"name": "no id"})

    def test_containers_are_isolated(self, temp_database):
        with get_session() as session:
            DocumentRepository(session, "devices_defender").upsert({"id": "same"})
            DocumentRepository(session, "devices_intune").upsert({"id": "same", "source": "intune"})

        with get_session() as session:
            assert DocumentRepository(session, "devices_defender").get_by_id("same") == {"id": "same"}
            assert DocumentRepository(session, "devices_intune").count() == 1

    def test_bulk_upsert_reports_each_item(self, temp_database):
        with get_session() as session:
            DocumentRepository(session, "devices_defender").upsert({"id": "dev-2"})

        with get_session() as session:
            results = DocumentRepository(session, "devices_defender").bulk_upsert(
                [{"id": "dev-1"}, {"id": "dev-2"}, {"name": "no id"}]
            )

        assert [(r.id, r.status_code) for r in results] == [
            ("dev-1", 201),
            ("dev-2", 200),
            (None, 400),
        ]
        assert [r.succeeded for r in results] == [True, True, False]
        assert all(r.request_charge == 0.0 for r in results)

        # The rejected item does not roll back the others
        with get_session() as session:
            assert DocumentRepository(session, "devices_defender").count() == 2

    def test_bulk_upsert_partition_key(self, temp_database):
        from telemetry_sync.persistence.schema import DocumentRecord

        with get_session() as session:
            DocumentRepository(session, "devices_all").bulk_upsert(
                [{"id": "doc-1", "syncKey": "aad-1"}], partition_key_field="syncKey"
            )

        with get_session() as session:
            record = session.get(DocumentRecord, ("devices_all", "doc-1"))
            assert record.partition_key == "aad-1"

    def test_query_page_continuation(self, temp_database):
        with get_session() as session:
            repo = DocumentRepository(session, "devices_intune")
            for index in range(5):
                repo.upsert({"id": f"dev-{index}"})

        with get_session() as session:
            repo = DocumentRepository(session, "devices_intune")
            first = repo.query_page(2)
            second = repo.query_page(2, first.continuation_token)
            third = repo.query_page(2, second.continuation_token)

        assert [doc["id"] for doc in first.items] == ["dev-0", "dev-1"]
        assert first.continuation_token == "2"
        assert [doc["id"] for doc in second.items] == ["dev-2", "dev-3"]
        assert [doc["id"] for doc in third.items] == ["dev-4"]
        assert third.has_more is False

    def test_query_page_exclude_ids(self, temp_database):
        with get_session() as session:
            repo = DocumentRepository(session, "sync_metadata")
            repo.upsert({"id": "a"})
            repo.upsert({"id": "b"})

            page = repo.query_page(10, exclude_ids=["a"])

        assert [doc["id"] for doc in page.items] == ["b"]

    @pytest.mark.parametrize("token", ["abc", "-1"])
    def test_invalid_continuation_token(self, temp_database, token):
        with get_session() as session:
            with pytest.raises(PersistenceError, match="Invalid continuation token"):
                DocumentRepository(session, "devices_intune").query_page(10, token)

    def test_delete_all(self, temp_database):
        with get_session() as session:
            DocumentRepository(session, "devices_all").upsert({"id": "1"})
            DocumentRepository(session, "devices_all").upsert({"id": "2"})
            DocumentRepository(session, "devices_intune").upsert({"id": "1"})

        with get_session() as session:
            assert DocumentRepository(session, "devices_all").delete_all() == 2

        with get_session() as session:
            assert DocumentRepository(session, "devices_all").count() == 0
            assert DocumentRepository(session, "devices_intune").count() == 1


class TestSyncMetadataRepository:
    """Tests for SyncMetadataRepository."""

    def test_get_missing(self, temp_database):
        with get_session() as session:
            assert SyncMetadataRepository(session).get("sync_metadata_defender") is None

    def test_save_and_get(self, temp_database):
        metadata = SyncMetadata.initial("sync_metadata_defender").model_copy(
            update={"devices_processed": 3, "total_devices_fetched": 4, "devices_failed": 1}
        )

        with get_session() as session:
            SyncMetadataRepository(session).save(metadata)

        with get_session() as session:
            loaded = SyncMetadataRepository(session).get("sync_metadata_defender")

        assert loaded.devices_processed == 3
        assert loaded.devices_failed == 1
        assert loaded.total_devices_fetched == 4

    def test_invalid_stored_document(self, temp_database):
        with get_session() as session:
            DocumentRepository(session, "sync_metadata").upsert({"id": "sync_metadata_intune"})

        with get_session() as session:
            with pytest.raises(DataIntegrityError, match="is invalid"):
                SyncMetadataRepository(session).get("sync_metadata_intune")


class TestAlertStatisticsRepository:
    """Tests for AlertStatisticsRepository."""

    def test_save_is_idempotent(self, temp_database):
        """Test that regenerating a period overwrites the same document."""
        first = make_statistics(
            StatisticsType.DETECTION_SOURCE, "2025-11-04T00:00:00.000Z", "2025-11-04T10:00:00.000Z"
        )
        second = make_statistics(
            StatisticsType.DETECTION_SOURCE, "2025-11-04T00:00:00.000Z", "2025-11-04T11:00:00.000Z"
        )

        with get_session() as session:
            repo = AlertStatisticsRepository(session)
            repo.save(first)
            repo.save(second)

        with get_session() as session:
            repo = AlertStatisticsRepository(session)
            assert repo.documents.count() == 1
            stored = repo.get_by_id("detectionSource_2025-11-04_2025-11-04")
            assert stored.period.end_date == "2025-11-04T11:00:00.000Z"

    def test_get_missing(self, temp_database):
        with get_session() as session:
            assert AlertStatisticsRepository(session).get_by_id("nope") is None

    def test_query_filters_and_order(self, temp_database):
        base = datetime(2025, 11, 1, tzinfo=timezone.utc)
        documents = [
            make_statistics(
                StatisticsType.DETECTION_SOURCE,
                "2025-11-01T00:00:00.000Z",
                "2025-11-01T23:00:00.000Z",
                generated_at=base,
            ),
            make_statistics(
                StatisticsType.USER_IMPACT,
                "2025-11-02T00:00:00.000Z",
                "2025-11-02T23:00:00.000Z",
                generated_at=base + timedelta(days=1),
            ),
            make_statistics(
                StatisticsType.DETECTION_SOURCE,
                "2020-01-01T00:00:00.000Z",
                "2025-11-03T23:00:00.000Z",
                period_type=PeriodType.CUSTOM,
                generated_at=base + timedelta(days=2),
            ),
        ]
        with get_session() as session:
            repo = AlertStatisticsRepository(session)
            for document in documents:
                repo.save(document)

        with get_session() as session:
            repo = AlertStatisticsRepository(session)

            newest_first = repo.query_statistics()
            by_type = repo.query_statistics(
                StatisticsQueryFilter(type=StatisticsType.DETECTION_SOURCE)
            )
            daily = repo.query_statistics(StatisticsQueryFilter(period_type=PeriodType.DAILY))
            in_range = repo.query_statistics(
                StatisticsQueryFilter(start_date="2025-11-02", end_date="2025-11-30")
            )
            first_page = repo.query_statistics(page_size=1)

        assert [doc.id for doc in newest_first.items] == [
            "detectionSource_2020-01-01_2025-11-03",
            "userImpact_2025-11-02_2025-11-02",
            "detectionSource_2025-11-01_2025-11-01",
        ]
        assert {doc.type for doc in by_type.items} == {StatisticsType.DETECTION_SOURCE}
        assert len(by_type.items) == 2
        assert len(daily.items) == 2
        assert [doc.id for doc in in_range.items] == ["userImpact_2025-11-02_2025-11-02"]
        assert len(first_page.items) == 1
        assert first_page.has_more is True

    def test_query_empty_container(self, temp_database):
        with get_session() as session:
            page = AlertStatisticsRepository(session).query_statistics(page_size=1)

        assert page.items == []
        assert page.has_more is False


class TestAlertEventRepository:
    """Tests for AlertEventRepository."""

    def _alert(self, alert_id: str, created: str = None):
        value = {"id": alert_id, "title": "Suspicious PowerShell"}
        if created:
            value["createdDateTime"] = created
        return {"id": alert_id, "value": value}

    def test_query_for_period(self, temp_database):
        with get_session() as session:
            repo = AlertEventRepository(session)
            repo.save(self._alert("a-2", "2025-11-04T10:00:00Z"))
            repo.save(self._alert("a-1", "2025-11-04T08:00:00.1234567Z"))
            repo.save(self._alert("a-old", "2025-11-03T23:59:59Z"))
            repo.save(self._alert("a-undated"))

        start = datetime(2025, 11, 4, tzinfo=timezone.utc)
        end = datetime(2025, 11, 4, 12, tzinfo=timezone.utc)
        with get_session() as session:
            page = AlertEventRepository(session).query_for_period(start, end, batch_size=10)

        assert [alert["id"] for alert in page.items] == ["a-1", "a-2"]
        assert page.has_more is False

    def test_query_for_period_pages(self, temp_database):
        with get_session() as session:
            repo = AlertEventRepository(session)
            for hour in range(5):
                repo.save(self._alert(f"a-{hour}", f"2025-11-04T0{hour}:00:00Z"))

        start = datetime(2025, 11, 4, tzinfo=timezone.utc)
        end = datetime(2025, 11, 5, tzinfo=timezone.utc)
        seen = []
        token = None
        with get_session() as session:
            repo = AlertEventRepository(session)
            while True:
                page = repo.query_for_period(start, end, batch_size=2, continuation_token=token)
                seen.extend(alert["id"] for alert in page.items)
                if not page.has_more:
                    break
                token = page.continuation_token

        assert seen == [f"a-{hour}" for hour in range(5)]


class TestDocumentStore:
    """Tests for the session-per-call DocumentStore."""

    def test_bulk_upsert_and_read_all(self, temp_database):
        store = DocumentStore("devices_defender")

        results = store.bulk_upsert([{"id": f"dev-{i}"} for i in range(5)])

        assert all(result.status_code == 201 for result in results)
        assert [doc["id"] for doc in store.read_all(page_size=2)] == [f"dev-{i}" for i in range(5)]

    def test_upsert_get_and_clear(self, temp_database):
        store = DocumentStore("devices_all", partition_key_field="syncKey")

        store.upsert({"id": "doc-1", "syncKey": "aad-1"})
        assert store.get("doc-1") == {"id": "doc-1", "syncKey": "aad-1"}

        assert store.clear() == 1
        assert store.read_all() == []

    def test_generated_timestamps_are_sortable(self):
        """Test that the sort key format orders lexicographically."""
        earlier = format_timestamp(datetime(2025, 11, 4, 9, tzinfo=timezone.utc))
        later = format_timestamp(datetime(2025, 11, 4, 10, tzinfo=timezone.utc))

        assert earlier < later
