"""Statistics generation run: resolve the period, aggregate, report."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from telemetry_sync.config.models import StatisticsConfig
from telemetry_sync.domain.models import PeriodType, StatisticsPeriod
from telemetry_sync.logging import get_logger
from telemetry_sync.logging.context import log_context
from telemetry_sync.utils.timestamps import elapsed_ms

from .aggregation import AlertStatisticsService
from .period import StatisticsPeriodResolver

logger = get_logger(__name__, component="statistics")


@dataclass
class StatisticsTypeResult:
    type: str
    alerts_processed: int
    processing_time_ms: int
    id: str


@dataclass
class StatisticsGenerationResult:
    """
    Outcome of one statistics run.

    Attributes:
        success: Whether every statistics type was generated and stored
        is_initial_run: Whether the run covered the full history
        period: Window aggregated; empty dates when the run failed
        types_generated: Number of statistics documents written
        total_alerts_processed: Alerts aggregated (same for every type)
        total_processing_time_ms: Wall-clock duration of the run
        results: Per-type summaries
        error: Failure message when success is False
    """

    success: bool
    is_initial_run: bool
    period: StatisticsPeriod
    types_generated: int = 0
    total_alerts_processed: int = 0
    total_processing_time_ms: int = 0
    results: List[StatisticsTypeResult] = field(default_factory=list)
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        """camelCase payload printed by the manual statistics trigger."""
        payload = {
            "success": self.success,
            "isInitialRun": self.is_initial_run,
            "period": self.period.to_document(),
            "typesGenerated": self.types_generated,
            "totalAlertsProcessed": self.total_alerts_processed,
            "totalProcessingTimeMs": self.total_processing_time_ms,
            "results": [
                {
                    "type": result.type,
                    "alertsProcessed": result.alerts_processed,
                    "processingTimeMs": result.processing_time_ms,
                    "id": result.id,
                }
                for result in self.results
            ],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class StatisticsGenerationPipeline:
    """Runs one statistics generation; never raises."""

    def __init__(self, resolver: StatisticsPeriodResolver, service):
        """
        Args:
            resolver: Chooses the period and run kind
            service: Object exposing ``generate_statistics_for_period(period, is_initial_run)``
        """
        self.resolver = resolver
        self.service = service

    def run(self) -> StatisticsGenerationResult:
        started = time.monotonic()

        with log_context(run_id=uuid4().hex, function_name="statistics"):
            try:
                resolved = self.resolver.resolve_period()
                logger.info(
                    "Statistics generation started",
                    extra={
                        "event": "statistics.run.started",
                        "is_initial_run": resolved.is_initial_run,
                        "period_start": resolved.period.start_date,
                        "period_end": resolved.period.end_date,
                        "period_type": resolved.period.period_type.value,
                    },
                )

                results = self.service.generate_statistics_for_period(
                    resolved.period, resolved.is_initial_run
                )

                result = StatisticsGenerationResult(
                    success=True,
                    is_initial_run=resolved.is_initial_run,
                    period=resolved.period,
                    types_generated=len(results),
                    total_alerts_processed=results[0].total_processed if results else 0,
                    total_processing_time_ms=elapsed_ms(started),
                    results=[
                        StatisticsTypeResult(
                            type=item.statistics.type.value,
                            alerts_processed=item.total_processed,
                            processing_time_ms=item.processing_time_ms,
                            id=item.statistics.id,
                        )
                        for item in results
                    ],
                )
            except Exception as e:
                logger.error(
                    f"Statistics generation failed: {e}",
                    extra={"event": "statistics.run.failed", "error_type": type(e).__name__},
                    exc_info=True,
                )
                return StatisticsGenerationResult(
                    success=False,
                    is_initial_run=False,
                    period=StatisticsPeriod(
                        start_date="", end_date="", period_type=PeriodType.CUSTOM
                    ),
                    total_processing_time_ms=elapsed_ms(started),
                    error=str(e) or type(e).__name__,
                )

            logger.info(
                "Statistics generation completed",
                extra={
                    "event": "statistics.run.completed",
                    "types_generated": result.types_generated,
                    "total_alerts_processed": result.total_alerts_processed,
                    "duration_ms": result.total_processing_time_ms,
                },
            )
            return result


def build_statistics_pipeline(config: StatisticsConfig) -> StatisticsGenerationPipeline:
    """Wire the statistics service and period resolver from configuration."""
    service = AlertStatisticsService(config)
    resolver = StatisticsPeriodResolver(service, config.historical_floor_date)
    return StatisticsGenerationPipeline(resolver, service)
