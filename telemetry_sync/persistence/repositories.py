"""Data access layer (repositories) for the document store.

Repositories work on an open session and a container name. They return plain
document dicts or domain models, never ORM rows, and wrap SQLAlchemy failures
in PersistenceError.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from telemetry_sync.domain.models import (
    AlertStatisticsDocument,
    PeriodType,
    StatisticsType,
    SyncMetadata,
)
from telemetry_sync.utils.timestamps import format_timestamp, parse_iso_datetime

from .exceptions import DataIntegrityError, PersistenceError
from .schema import DocumentRecord, _format_datetime

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYNC_METADATA_CONTAINER = "sync_metadata"


@dataclass
class BulkItemResult:
    """Outcome of one item of a bulk write, modelled on HTTP status codes.

    ``request_charge`` is the store-reported cost of the write; the SQL store
    has no such notion and always reports 0.0.
    """

    id: Optional[str]
    status_code: int
    request_charge: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class QueryPage(Generic[T]):
    """One page of a query plus the opaque token for the next page."""

    items: List[T] = field(default_factory=list)
    continuation_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None


@dataclass
class StatisticsQueryFilter:
    """Optional constraints for statistics queries; dates compare on ``YYYY-MM-DD``."""

    type: Optional[StatisticsType] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    period_type: Optional[PeriodType] = None


def _decode_token(token: Optional[str]) -> int:
    if token is None:
        return 0
    try:
        offset = int(token)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Invalid continuation token: {token!r}") from e
    if offset < 0:
        raise PersistenceError(f"Invalid continuation token: {token!r}")
    return offset


def _classify_write_error(error: SQLAlchemyError) -> int:
    """Map a failed single-document write onto the status code a bulk API reports."""
    if isinstance(error, IntegrityError):
        return 409
    if isinstance(error, OperationalError):
        message = str(error.orig).lower() if error.orig is not None else str(error).lower()
        return 429 if "locked" in message or "busy" in message else 503
    return 500


class DocumentRepository:
    """Get, upsert, list and clear documents of one container."""

    def __init__(self, session: Session, container: str):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
            container: Logical container the documents belong to
        """
        self.session = session
        self.container = container

    def get_by_id(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Return the document with ``document_id`` or None.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            record = self.session.get(DocumentRecord, (self.container, document_id))
            return record.to_document() if record is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading {self.container}/{document_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read document: {e}") from e

    def upsert(
        self,
        document: Dict[str, Any],
        partition_key: Optional[str] = None,
        sort_key: Optional[str] = None,
    ) -> bool:
        """Insert ``document`` or overwrite the stored one with the same id.

        Args:
            document: JSON-serializable mapping with an ``id`` key
            partition_key: Value copied to the partition column
            sort_key: Normalized timestamp copied to the sort column

        Returns:
            True if a new document was created, False if one was replaced

        Raises:
            DataIntegrityError: If the document has no id or violates a constraint
            PersistenceError: If database error occurs
        """
        document_id = document.get("id")
        if document_id in (None, ""):
            raise DataIntegrityError(f"Document in '{self.container}' has no id")

        try:
            existing = self.session.get(DocumentRecord, (self.container, str(document_id)))
            if existing is None:
                self.session.add(
                    DocumentRecord.from_document(
                        self.container, document, partition_key=partition_key, sort_key=sort_key
                    )
                )
                created = True
            else:
                existing.body = dict(document)
                existing.partition_key = partition_key
                existing.sort_key = sort_key
                existing.updated_at = _format_datetime(datetime.now(timezone.utc))
                created = False
            self.session.flush()
            return created
        except IntegrityError as e:
            logger.error(f"Integrity error upserting {self.container}/{document_id}: {e}")
            raise DataIntegrityError(f"Failed to upsert document: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting {self.container}/{document_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert document: {e}") from e

    def bulk_upsert(
        self,
        documents: Sequence[Dict[str, Any]],
        partition_key_field: Optional[str] = None,
    ) -> List[BulkItemResult]:
        """Upsert each document in its own savepoint and report per-item status.

        A failing item is rolled back to its savepoint and reported with a
        non-2xx status; the other items are unaffected. Statuses: 201 created,
        200 replaced, 400 missing id, 409 constraint violation, 429 store
        busy/locked, 503 other operational error, 500 anything else.

        Args:
            documents: Documents to write, in order
            partition_key_field: Document key whose value fills the partition column

        Returns:
            One BulkItemResult per input document, in input order
        """
        results: List[BulkItemResult] = []
        for document in documents:
            document_id = document.get("id")
            if document_id in (None, ""):
                results.append(BulkItemResult(None, 400, error="Document has no id"))
                continue

            partition_key = document.get(partition_key_field) if partition_key_field else None
            savepoint = self.session.begin_nested()
            try:
                created = self.upsert(
                    document,
                    partition_key=str(partition_key) if partition_key is not None else None,
                )
                savepoint.commit()
                results.append(BulkItemResult(str(document_id), 201 if created else 200))
            except PersistenceError as e:
                savepoint.rollback()
                cause = e.__cause__
                status = _classify_write_error(cause) if isinstance(cause, SQLAlchemyError) else 500
                results.append(BulkItemResult(str(document_id), status, error=str(e)))
        return results

    def query_page(
        self,
        page_size: int,
        continuation_token: Optional[str] = None,
        exclude_ids: Sequence[str] = (),
    ) -> QueryPage[Dict[str, Any]]:
        """Read documents ordered by id, ``page_size`` at a time.

        Raises:
            PersistenceError: If the token is invalid or database error occurs
        """
        offset = _decode_token(continuation_token)
        try:
            stmt = select(DocumentRecord).where(DocumentRecord.container == self.container)
            if exclude_ids:
                stmt = stmt.where(DocumentRecord.id.not_in(list(exclude_ids)))
            stmt = stmt.order_by(DocumentRecord.id).offset(offset).limit(page_size + 1)
            records = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Error listing {self.container}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list documents: {e}") from e

        has_more = len(records) > page_size
        return QueryPage(
            items=[record.to_document() for record in records[:page_size]],
            continuation_token=str(offset + page_size) if has_more else None,
        )

    def count(self) -> int:
        """Number of documents in the container."""
        try:
            stmt = select(func.count()).select_from(DocumentRecord).where(
                DocumentRecord.container == self.container
            )
            return int(self.session.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count documents: {e}") from e

    def delete_all(self) -> int:
        """Remove every document of the container and return how many were removed."""
        try:
            result = self.session.execute(
                delete(DocumentRecord).where(DocumentRecord.container == self.container)
            )
            self.session.flush()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Error clearing {self.container}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to clear container: {e}") from e


class SyncMetadataRepository:
    """Singleton sync metadata records, one per device source."""

    def __init__(self, session: Session, container: str = SYNC_METADATA_CONTAINER):
        self.documents = DocumentRepository(session, container)

    def get(self, metadata_id: str) -> Optional[SyncMetadata]:
        """Return the stored metadata or None if no sync has finished yet.

        Raises:
            DataIntegrityError: If the stored document no longer validates
            PersistenceError: If database error occurs
        """
        document = self.documents.get_by_id(metadata_id)
        if document is None:
            return None
        try:
            return SyncMetadata.model_validate(document)
        except ValidationError as e:
            raise DataIntegrityError(f"Stored sync metadata '{metadata_id}' is invalid: {e}") from e

    def save(self, metadata: SyncMetadata) -> SyncMetadata:
        """Overwrite the record with ``metadata``."""
        self.documents.upsert(metadata.to_document())
        return metadata


class AlertStatisticsRepository:
    """Alert statistics documents, partitioned by period start date."""

    def __init__(self, session: Session, container: str = "alerts_statistics"):
        self.documents = DocumentRepository(session, container)
        self.session = session

    def save(self, statistics: AlertStatisticsDocument) -> AlertStatisticsDocument:
        """Upsert ``statistics``; the id makes repeated runs idempotent."""
        self.documents.upsert(
            statistics.to_document(),
            partition_key=statistics.period_start_date,
            sort_key=format_timestamp(statistics.generated_at),
        )
        logger.info(
            "Alert statistics saved",
            extra={
                "event": "statistics.document.saved",
                "statistics_id": statistics.id,
                "statistics_type": statistics.type.value,
            },
        )
        return statistics

    def get_by_id(self, statistics_id: str) -> Optional[AlertStatisticsDocument]:
        """Return the statistics document or None."""
        document = self.documents.get_by_id(statistics_id)
        if document is None:
            return None
        return self._to_model(document)

    def query_statistics(
        self,
        query_filter: Optional[StatisticsQueryFilter] = None,
        page_size: int = 100,
        continuation_token: Optional[str] = None,
    ) -> QueryPage[AlertStatisticsDocument]:
        """Newest-first page of statistics documents matching ``query_filter``.

        Raises:
            PersistenceError: If the token is invalid or database error occurs
        """
        query_filter = query_filter or StatisticsQueryFilter()
        offset = _decode_token(continuation_token)
        try:
            stmt = select(DocumentRecord).where(
                DocumentRecord.container == self.documents.container
            )
            if query_filter.type is not None:
                stmt = stmt.where(
                    DocumentRecord.body["type"].as_string() == StatisticsType(query_filter.type).value
                )
            if query_filter.period_type is not None:
                stmt = stmt.where(
                    DocumentRecord.body[("period", "periodType")].as_string()
                    == PeriodType(query_filter.period_type).value
                )
            if query_filter.start_date:
                stmt = stmt.where(DocumentRecord.partition_key >= query_filter.start_date[:10])
            if query_filter.end_date:
                stmt = stmt.where(DocumentRecord.partition_key <= query_filter.end_date[:10])
            stmt = (
                stmt.order_by(DocumentRecord.sort_key.desc(), DocumentRecord.id)
                .offset(offset)
                .limit(page_size + 1)
            )
            records = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Error querying statistics: {e}", exc_info=True)
            raise PersistenceError(f"Failed to query statistics: {e}") from e

        has_more = len(records) > page_size
        return QueryPage(
            items=[self._to_model(record.to_document()) for record in records[:page_size]],
            continuation_token=str(offset + page_size) if has_more else None,
        )

    @staticmethod
    def _to_model(document: Dict[str, Any]) -> AlertStatisticsDocument:
        try:
            return AlertStatisticsDocument.model_validate(document)
        except ValidationError as e:
            raise DataIntegrityError(
                f"Stored statistics document '{document.get('id')}' is invalid: {e}"
            ) from e


class AlertEventRepository:
    """Alert event documents (``{"id": ..., "value": <Graph alert>}``)."""

    def __init__(self, session: Session, container: str = "alerts"):
        self.documents = DocumentRepository(session, container)
        self.session = session

    def save(self, alert: Dict[str, Any]) -> None:
        """Upsert an alert event, indexing it by ``value.createdDateTime``."""
        created = parse_iso_datetime((alert.get("value") or {}).get("createdDateTime"))
        self.documents.upsert(
            alert,
            partition_key=str(alert.get("id")),
            sort_key=format_timestamp(created) if created else None,
        )

    def query_for_period(
        self,
        start: datetime,
        end: datetime,
        batch_size: int,
        continuation_token: Optional[str] = None,
    ) -> QueryPage[Dict[str, Any]]:
        """Alerts created within ``[start, end]``, oldest first.

        Alerts without a creation time are never returned.

        Raises:
            PersistenceError: If the token is invalid or database error occurs
        """
        offset = _decode_token(continuation_token)
        try:
            stmt = (
                select(DocumentRecord)
                .where(
                    DocumentRecord.container == self.documents.container,
                    DocumentRecord.sort_key.is_not(None),
                    DocumentRecord.sort_key >= format_timestamp(start),
                    DocumentRecord.sort_key <= format_timestamp(end),
                )
                .order_by(DocumentRecord.sort_key, DocumentRecord.id)
                .offset(offset)
                .limit(batch_size + 1)
            )
            records = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Error querying alert events: {e}", exc_info=True)
            raise PersistenceError(f"Failed to query alert events: {e}") from e

        has_more = len(records) > batch_size
        return QueryPage(
            items=[record.to_document() for record in records[:batch_size]],
            continuation_token=str(offset + batch_size) if has_more else None,
        )
