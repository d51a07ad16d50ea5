"""Batched bulk writes of device records with per-item error capture.

Devices are written in contiguous batches, strictly one after another. Each
batch is a single bulk write whose per-item status codes decide which
devices succeeded. Items the store reports as throttled (HTTP 429) are
retried one by one when only part of the batch was throttled; a batch that
raises is counted as failed in full and the run moves on to the next batch.
"""

import math
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from telemetry_sync.domain.models import MAX_SYNC_ERRORS, DeviceSyncError, device_display_name
from telemetry_sync.logging import get_logger
from telemetry_sync.persistence.exceptions import PersistenceError
from telemetry_sync.persistence.repositories import BulkItemResult

from .models import BatchUpsertResult

logger = get_logger(__name__, component="sync")

THROTTLED_STATUS = 429

# Called before each batch with (batch_number, total_batches, processed_so_far)
BatchStartCallback = Callable[[int, int, int], None]


def create_batches(items: Sequence[Any], batch_size: int) -> Iterator[Sequence[Any]]:
    """Yield contiguous slices of ``items``; only the last may be shorter.

    Raises:
        ValueError: If batch_size is not positive
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got: {batch_size}")
    for start in range(0, len(items), batch_size):
        yield items[start : start + batch_size]


def count_batches(item_count: int, batch_size: int) -> int:
    return math.ceil(item_count / batch_size) if item_count else 0


def item_error_message(status_code: int) -> str:
    reason = "Throttled" if status_code == THROTTLED_STATUS else "Failed"
    return f"HTTP {status_code}: {reason}"


class ErrorCollector:
    """Keeps the first ``max_entries`` errors of a run and counts the rest."""

    def __init__(self, max_entries: int = MAX_SYNC_ERRORS):
        self.max_entries = min(max_entries, MAX_SYNC_ERRORS)
        self.errors: List[DeviceSyncError] = []
        self.dropped = 0

    def add(self, error: DeviceSyncError) -> bool:
        """Record ``error``; returns False once the cap has been reached."""
        if len(self.errors) >= self.max_entries:
            self.dropped += 1
            return False
        self.errors.append(error)
        return True

    def remove_device(self, device_id: str) -> None:
        for index, error in enumerate(self.errors):
            if error.device_id == device_id:
                del self.errors[index]
                return


class BatchUpsertEngine:
    """
    Writes device records through a document store in sequential batches.

    Attributes:
        store: Object with ``bulk_upsert(documents)`` and ``upsert(document)``
        batch_size: Devices per bulk write
        max_errors: Errors kept per run (hard cap 100)
        throttle_retry_delay: Seconds to wait before retrying throttled items
        retry_attempts: Attempts per individually retried item
        retry_base_delay: Initial backoff between single-item attempts (doubles)
    """

    def __init__(
        self,
        store,
        batch_size: int = 100,
        max_errors: int = MAX_SYNC_ERRORS,
        throttle_retry_delay: float = 2.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got: {batch_size}")
        self.store = store
        self.batch_size = batch_size
        self.max_errors = max_errors
        self.throttle_retry_delay = throttle_retry_delay
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep

    def upsert_all(
        self,
        items: Sequence[Dict[str, Any]],
        on_batch_start: Optional[BatchStartCallback] = None,
    ) -> BatchUpsertResult:
        """
        Write every item, one bulk write per batch.

        Args:
            items: Device records, each carrying an ``id``
            on_batch_start: Optional hook invoked before each batch

        Returns:
            BatchUpsertResult where success_count + failure_count == len(items)
        """
        result = BatchUpsertResult()
        if not items:
            logger.debug("Nothing to upsert", extra={"event": "sync.upsert.empty"})
            return result

        collector = ErrorCollector(self.max_errors)
        total_batches = count_batches(len(items), self.batch_size)

        for batch_number, batch in enumerate(create_batches(items, self.batch_size), start=1):
            if on_batch_start is not None:
                on_batch_start(batch_number, total_batches, result.success_count)

            try:
                success, failure, charge = self.upsert_batch(batch, collector)
            except Exception as e:
                result.failure_count += len(batch)
                collector.add(
                    DeviceSyncError(
                        device_id=f"batch_{batch_number}",
                        error=f"Batch upsert failed: {e}",
                    )
                )
                logger.error(
                    f"Batch {batch_number}/{total_batches} failed: {e}",
                    extra={
                        "event": "sync.upsert.batch_failed",
                        "batch_number": batch_number,
                        "batch_size": len(batch),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                continue

            result.success_count += success
            result.failure_count += failure
            result.total_ru_consumed += charge

            logger.debug(
                f"Batch {batch_number}/{total_batches} written",
                extra={
                    "event": "sync.upsert.batch_completed",
                    "batch_number": batch_number,
                    "succeeded": success,
                    "failed": failure,
                },
            )

        result.errors = collector.errors
        if collector.dropped:
            logger.warning(
                f"Error list capped at {collector.max_entries} entries",
                extra={"event": "sync.upsert.errors_capped", "dropped_errors": collector.dropped},
            )
        return result

    def upsert_batch(
        self, batch: Sequence[Dict[str, Any]], collector: ErrorCollector
    ) -> Tuple[int, int, float]:
        """
        Bulk write one batch and classify its items.

        Returns:
            Tuple of (succeeded, failed, request charge)

        Raises:
            Exception: Whatever the store raises for the batch as a whole
        """
        item_results: List[BulkItemResult] = self.store.bulk_upsert(list(batch))
        if len(item_results) != len(batch):
            raise PersistenceError(
                f"Store returned {len(item_results)} results for {len(batch)} documents"
            )

        succeeded = 0
        failed = 0
        charge = 0.0
        throttled: List[Dict[str, Any]] = []

        for device, item in zip(batch, item_results):
            charge += item.request_charge or 0.0
            if item.succeeded:
                succeeded += 1
                continue
            failed += 1
            if item.status_code == THROTTLED_STATUS:
                throttled.append(device)
            collector.add(
                DeviceSyncError(
                    device_id=str(device.get("id", "unknown")),
                    device_name=device_display_name(device),
                    error=item_error_message(item.status_code),
                )
            )

        # A fully throttled batch is left failed
        if throttled and len(throttled) < len(batch):
            recovered = self._retry_throttled(throttled, collector)
            succeeded += recovered
            failed -= recovered

        return succeeded, failed, charge

    def _retry_throttled(
        self, devices: List[Dict[str, Any]], collector: ErrorCollector
    ) -> int:
        logger.warning(
            f"Retrying {len(devices)} throttled devices individually",
            extra={
                "event": "sync.upsert.throttle_retry",
                "throttled_count": len(devices),
                "wait_seconds": self.throttle_retry_delay,
            },
        )
        self._sleep(self.throttle_retry_delay)

        recovered = 0
        for device in devices:
            device_id = str(device.get("id", "unknown"))
            if self._upsert_with_backoff(device):
                recovered += 1
                collector.remove_device(device_id)
                logger.debug(
                    "Throttled device written on retry",
                    extra={"event": "sync.upsert.retry_succeeded", "device_id": device_id},
                )
        return recovered

    def _upsert_with_backoff(self, device: Dict[str, Any]) -> bool:
        delay = self.retry_base_delay
        for attempt in range(1, self.retry_attempts + 1):
            try:
                self.store.upsert(device)
                return True
            except (PersistenceError, SQLAlchemyError) as e:
                logger.warning(
                    f"Retry {attempt}/{self.retry_attempts} failed: {e}",
                    extra={
                        "event": "sync.upsert.retry_failed",
                        "device_id": device.get("id"),
                        "attempt": attempt,
                    },
                )
                if attempt < self.retry_attempts:
                    self._sleep(delay)
                    delay *= 2
        return False
