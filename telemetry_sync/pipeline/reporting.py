"""JSON payloads returned by manual sync triggers."""

from typing import Any, Dict

from telemetry_sync.utils.timestamps import format_timestamp, utc_now

from .models import SyncResult

DEFAULT_ERROR_SAMPLE_SIZE = 10


def build_sync_response(result: SyncResult, sample_size: int = DEFAULT_ERROR_SAMPLE_SIZE) -> Dict[str, Any]:
    """
    Render a SyncResult as the camelCase trigger payload.

    Args:
        result: Finished sync run
        sample_size: Errors included in ``errors.sample``

    Returns:
        Dictionary ready for ``json.dumps``
    """
    graph = result.graph_api_metrics
    cosmos = result.cosmos_db_metrics

    return {
        "success": result.success,
        "status": result.status.value,
        "summary": {
            "totalDevicesFetched": result.total_devices_fetched,
            "devicesProcessed": result.devices_processed,
            "devicesFailed": result.devices_failed,
            "executionTimeMs": result.execution_time_ms,
        },
        "graphApiMetrics": {
            "calls": graph.calls,
            "pages": graph.pages,
            "totalRequestTimeMs": graph.total_request_time_ms,
            "averageRequestTimeMs": round(graph.average_request_time_ms, 2),
        },
        "cosmosDbMetrics": {
            "writes": cosmos.writes,
            "totalRuConsumed": round(cosmos.total_ru_consumed, 2),
            "averageRuPerWrite": round(cosmos.average_ru_per_write, 2),
        },
        "errors": {
            "count": len(result.errors),
            "sample": [error.to_document() for error in result.errors[:sample_size]],
            "hasMore": len(result.errors) > sample_size,
        },
        "timestamp": format_timestamp(utc_now()),
    }
