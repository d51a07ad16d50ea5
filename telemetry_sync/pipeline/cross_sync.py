"""Cross matching of the Intune and Defender inventories.

Both device containers are read in full and paired on the Azure AD device id
(``azureADDeviceId`` on Intune devices, ``aadDeviceId`` on Defender machines).
Every pairing becomes one document in the combined container, which is
cleared and rewritten on each run.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from telemetry_sync.config.models import AppConfig
from telemetry_sync.domain.models import DeviceSyncDocument, DeviceSyncError, DeviceSyncState
from telemetry_sync.logging import get_logger
from telemetry_sync.logging.context import log_context
from telemetry_sync.persistence.stores import DocumentStore
from telemetry_sync.utils.timestamps import elapsed_ms, utc_now

from .batching import BatchUpsertEngine
from .models import CrossSyncResult

logger = get_logger(__name__, component="cross_sync")


def match_devices(
    defender_devices: Sequence[Dict[str, Any]],
    intune_devices: Sequence[Dict[str, Any]],
    sync_timestamp: Optional[datetime] = None,
) -> List[DeviceSyncDocument]:
    """
    Pair devices of both inventories on their Azure AD device id.

    Devices without an Azure AD id are never matched; they are keyed by
    their source id instead.

    Args:
        defender_devices: Defender machine records
        intune_devices: Intune managed device records
        sync_timestamp: Timestamp stamped on every document (default now)

    Returns:
        Matched and Intune-only documents in Intune order, then Defender-only
        documents in Defender order
    """
    sync_timestamp = sync_timestamp or utc_now()

    defender_by_aad_id: Dict[str, Dict[str, Any]] = {}
    defender_without_aad_id: List[Dict[str, Any]] = []
    for defender in defender_devices:
        aad_id = defender.get("aadDeviceId")
        if aad_id:
            defender_by_aad_id[aad_id] = defender
        else:
            defender_without_aad_id.append(defender)

    documents: List[DeviceSyncDocument] = []
    matched_aad_ids = set()

    def add(sync_key: str, state: DeviceSyncState, intune=None, defender=None) -> None:
        documents.append(
            DeviceSyncDocument(
                id=str(uuid4()),
                sync_key=str(sync_key),
                sync_state=state,
                sync_timestamp=sync_timestamp,
                intune=intune,
                defender=defender,
            )
        )

    for intune in intune_devices:
        aad_id = intune.get("azureADDeviceId")
        if not aad_id:
            logger.debug(
                "Intune device has no Azure AD device id",
                extra={"event": "cross_sync.match.missing_aad_id", "device_id": intune.get("id")},
            )
            add(intune.get("id"), DeviceSyncState.ONLY_INTUNE, intune=intune)
            continue

        defender = defender_by_aad_id.get(aad_id)
        if defender is not None:
            matched_aad_ids.add(aad_id)
            add(aad_id, DeviceSyncState.MATCHED, intune=intune, defender=defender)
        else:
            add(aad_id, DeviceSyncState.ONLY_INTUNE, intune=intune)

    for aad_id, defender in defender_by_aad_id.items():
        if aad_id not in matched_aad_ids:
            add(aad_id, DeviceSyncState.ONLY_DEFENDER, defender=defender)

    for defender in defender_without_aad_id:
        add(defender.get("id"), DeviceSyncState.ONLY_DEFENDER, defender=defender)

    return documents


class DeviceCrossSyncService:
    """Rebuilds the combined device container from both inventories."""

    def __init__(
        self,
        defender_store: DocumentStore,
        intune_store: DocumentStore,
        target_store: DocumentStore,
        engine: BatchUpsertEngine,
    ):
        self.defender_store = defender_store
        self.intune_store = intune_store
        self.target_store = target_store
        self.engine = engine

    def run(self) -> CrossSyncResult:
        """
        Execute one cross sync.

        Returns:
            CrossSyncResult; failures are reported with ``success=False``
        """
        started = time.monotonic()

        with log_context(run_id=uuid4().hex, sync_source="cross_sync"):
            logger.info("Cross sync started", extra={"event": "cross_sync.run.started"})
            try:
                defender_devices = self.defender_store.read_all()
                intune_devices = self.intune_store.read_all()
                documents = match_devices(defender_devices, intune_devices)

                result = CrossSyncResult(
                    success=True,
                    defender_devices=len(defender_devices),
                    intune_devices=len(intune_devices),
                )
                for document in documents:
                    if document.sync_state is DeviceSyncState.MATCHED:
                        result.matched += 1
                    elif document.sync_state is DeviceSyncState.ONLY_INTUNE:
                        result.only_intune += 1
                    else:
                        result.only_defender += 1

                deleted = self.target_store.clear()
                logger.info(
                    f"Cleared {deleted} existing sync documents",
                    extra={"event": "cross_sync.clear.completed", "deleted_count": deleted},
                )

                upsert_result = self.engine.upsert_all([d.to_document() for d in documents])
                result.documents_written = upsert_result.success_count
                result.documents_failed = upsert_result.failure_count
                result.errors = upsert_result.errors
                result.execution_time_ms = elapsed_ms(started)

            except Exception as e:
                logger.error(
                    f"Cross sync failed: {e}",
                    extra={"event": "cross_sync.run.failed", "error_type": type(e).__name__},
                    exc_info=True,
                )
                return CrossSyncResult(
                    success=False,
                    execution_time_ms=elapsed_ms(started),
                    errors=[DeviceSyncError(device_id="cross_sync", error=str(e))],
                    error=str(e),
                )

            logger.info(
                "Cross sync completed",
                extra={
                    "event": "cross_sync.run.completed",
                    "matched": result.matched,
                    "only_intune": result.only_intune,
                    "only_defender": result.only_defender,
                    "documents_written": result.documents_written,
                    "documents_failed": result.documents_failed,
                    "duration_ms": result.execution_time_ms,
                },
            )
            return result


def build_cross_sync_service(app_config: AppConfig) -> DeviceCrossSyncService:
    """Wire the stores and batch writer from configuration."""
    target = DocumentStore(app_config.cross_sync.container, partition_key_field="syncKey")
    return DeviceCrossSyncService(
        defender_store=DocumentStore(app_config.defender_sync.container),
        intune_store=DocumentStore(app_config.intune_sync.container),
        target_store=target,
        engine=BatchUpsertEngine(
            target,
            batch_size=app_config.cross_sync.batch_size,
            max_errors=app_config.advanced.max_error_entries,
            throttle_retry_delay=app_config.advanced.throttle_retry_delay,
        ),
    )


def build_cross_sync_response(result: CrossSyncResult) -> Dict[str, Any]:
    """camelCase payload printed by the manual cross-sync trigger."""
    payload = {
        "success": result.success,
        "statistics": {
            "matched": result.matched,
            "onlyIntune": result.only_intune,
            "onlyDefender": result.only_defender,
            "totalProcessed": result.matched + result.only_intune + result.only_defender,
            "documentsWritten": result.documents_written,
            "documentsFailed": result.documents_failed,
        },
        "executionTimeMs": result.execution_time_ms,
        "errors": [error.to_document() for error in result.errors],
    }
    if result.error:
        payload["error"] = result.error
    return payload
