"""Database schema definition for the document store.

Every container (device inventories, sync metadata, alerts, statistics) shares
one ``documents`` table keyed by ``(container, id)``. The document itself is
kept as JSON; ``partition_key`` and ``sort_key`` are copied out of it so the
common range queries can use an index.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index, String, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class DocumentRecord(Base):
    """ORM model for one stored JSON document."""

    __tablename__ = "documents"

    container = Column(String(100), primary_key=True, nullable=False)
    id = Column(String(255), primary_key=True, nullable=False)

    partition_key = Column(String(255), nullable=True)
    # Normalized ISO 8601 timestamp used for ordering and time-range reads
    sort_key = Column(String(50), nullable=True)

    body = Column(JSON, nullable=False)

    # Timestamps (stored as ISO 8601 strings)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_documents_partition", "container", "partition_key"),
        Index("idx_documents_sort", "container", "sort_key"),
    )

    def to_document(self) -> Dict[str, Any]:
        """Return a copy of the stored document body."""
        return dict(self.body)

    @classmethod
    def from_document(
        cls,
        container: str,
        document: Dict[str, Any],
        partition_key: Optional[str] = None,
        sort_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "DocumentRecord":
        """Build a new row for ``document`` (which must carry an ``id``)."""
        stamp = _format_datetime(now or datetime.now(timezone.utc))
        return cls(
            container=container,
            id=str(document["id"]),
            partition_key=partition_key,
            sort_key=sort_key,
            body=dict(document),
            created_at=stamp,
            updated_at=stamp,
        )


def _format_datetime(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.ffffffZ``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def create_schema(engine: Engine) -> None:
    """Create tables and indexes that do not exist yet (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")
    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
