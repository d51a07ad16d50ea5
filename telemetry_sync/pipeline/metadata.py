"""Singleton sync metadata record per device source."""

from sqlalchemy.exc import SQLAlchemyError

from telemetry_sync.domain.models import SyncMetadata
from telemetry_sync.logging import get_logger
from telemetry_sync.persistence.database import get_session
from telemetry_sync.persistence.exceptions import PersistenceError
from telemetry_sync.persistence.repositories import SyncMetadataRepository
from telemetry_sync.persistence.stores import SessionScope

logger = get_logger(__name__, component="sync")

DEFENDER_METADATA_ID = "sync_metadata_defender"
INTUNE_METADATA_ID = "sync_metadata_intune"


class SyncMetadataStore:
    """Reads and overwrites the metadata record of one source.

    There is a single writer per run; overlapping runs of the same source
    overwrite each other and the last writer wins.
    """

    def __init__(self, metadata_id: str, session_scope: SessionScope = get_session):
        self.metadata_id = metadata_id
        self._session_scope = session_scope

    def get(self) -> SyncMetadata:
        """Stored metadata, or zero-valued metadata before the first sync.

        A record that cannot be read or no longer validates is treated like a
        missing one so the next sync can overwrite it.
        """
        try:
            with self._session_scope() as session:
                metadata = SyncMetadataRepository(session).get(self.metadata_id)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(
                f"Failed to read sync metadata, starting from initial state: {e}",
                extra={
                    "event": "sync.metadata.read_failed",
                    "metadata_id": self.metadata_id,
                    "error_type": type(e).__name__,
                },
            )
            return SyncMetadata.initial(self.metadata_id)

        if metadata is None:
            logger.info(
                "No sync metadata found, starting from initial state",
                extra={"event": "sync.metadata.initial", "metadata_id": self.metadata_id},
            )
            return SyncMetadata.initial(self.metadata_id)
        return metadata

    def put(self, metadata: SyncMetadata) -> SyncMetadata:
        """Overwrite the record; the id is always forced to the singleton key.

        Raises:
            PersistenceError: If the write fails
        """
        if metadata.id != self.metadata_id:
            metadata = metadata.model_copy(update={"id": self.metadata_id})
        with self._session_scope() as session:
            return SyncMetadataRepository(session).save(metadata)
