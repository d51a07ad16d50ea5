"""Session-scoped access to a single document container.

Repositories operate inside a caller-provided session; the sync pipelines
instead want every bulk write to be its own unit of work. ``DocumentStore``
opens one session per call through ``get_session``.
"""

from typing import Any, Callable, ContextManager, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from .database import get_session
from .repositories import BulkItemResult, DocumentRepository

SessionScope = Callable[[], ContextManager[Session]]


class DocumentStore:
    """Bulk and single-document writes against one container."""

    def __init__(
        self,
        container: str,
        partition_key_field: Optional[str] = "id",
        session_scope: SessionScope = get_session,
    ):
        self.container = container
        self.partition_key_field = partition_key_field
        self._session_scope = session_scope

    def bulk_upsert(self, documents: Sequence[Dict[str, Any]]) -> List[BulkItemResult]:
        """Write ``documents`` in one transaction with per-item results.

        Raises:
            PersistenceError: If the transaction as a whole fails
        """
        with self._session_scope() as session:
            return DocumentRepository(session, self.container).bulk_upsert(
                documents, partition_key_field=self.partition_key_field
            )

    def upsert(self, document: Dict[str, Any]) -> None:
        """Write a single document in its own transaction."""
        partition_key = document.get(self.partition_key_field) if self.partition_key_field else None
        with self._session_scope() as session:
            DocumentRepository(session, self.container).upsert(
                document,
                partition_key=str(partition_key) if partition_key is not None else None,
            )

    def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        with self._session_scope() as session:
            return DocumentRepository(session, self.container).get_by_id(document_id)

    def read_all(self, page_size: int = 1000) -> List[Dict[str, Any]]:
        """Every document of the container, read page by page."""
        documents: List[Dict[str, Any]] = []
        token = None
        while True:
            with self._session_scope() as session:
                page = DocumentRepository(session, self.container).query_page(page_size, token)
            documents.extend(page.items)
            if not page.has_more:
                return documents
            token = page.continuation_token

    def clear(self) -> int:
        """Delete every document of the container."""
        with self._session_scope() as session:
            return DocumentRepository(session, self.container).delete_all()
