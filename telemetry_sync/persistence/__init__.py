"""Persistence layer: a JSON document store on top of SQLAlchemy.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repositories (operate on an open session)
    - DocumentRepository: get/upsert/bulk upsert/list/clear one container
    - SyncMetadataRepository: singleton sync metadata records
    - AlertStatisticsRepository: statistics documents and queries
    - AlertEventRepository: alert events read by time range

    # Session-per-call wrapper used by the pipelines
    - DocumentStore

Example usage:
    >>> from telemetry_sync.persistence import init_database, get_session, SyncMetadataRepository
    >>> init_database("sqlite:///./data/telemetry_sync.db")
    >>> with get_session() as session:
    ...     metadata = SyncMetadataRepository(session).get("sync_metadata_defender")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    SYNC_METADATA_CONTAINER,
    AlertEventRepository,
    AlertStatisticsRepository,
    BulkItemResult,
    DocumentRepository,
    QueryPage,
    StatisticsQueryFilter,
    SyncMetadataRepository,
)
from .stores import DocumentStore

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "DocumentRepository",
    "SyncMetadataRepository",
    "AlertStatisticsRepository",
    "AlertEventRepository",
    "DocumentStore",
    "BulkItemResult",
    "QueryPage",
    "StatisticsQueryFilter",
    "SYNC_METADATA_CONTAINER",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
