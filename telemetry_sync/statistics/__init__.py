"""Alert statistics: period selection, aggregation and the generation run."""

from .aggregation import (
    STATISTICS_TYPES,
    AggregationResult,
    AlertStatisticsService,
    build_top_n,
    extract_domains,
    extract_ip_addresses,
    extract_user_upns,
)
from .exceptions import StatisticsError
from .period import ResolvedPeriod, StatisticsPeriodResolver
from .runner import (
    StatisticsGenerationPipeline,
    StatisticsGenerationResult,
    StatisticsTypeResult,
    build_statistics_pipeline,
)

__all__ = [
    "AlertStatisticsService",
    "AggregationResult",
    "STATISTICS_TYPES",
    "build_top_n",
    "extract_domains",
    "extract_ip_addresses",
    "extract_user_upns",
    "StatisticsError",
    "ResolvedPeriod",
    "StatisticsPeriodResolver",
    "StatisticsGenerationPipeline",
    "StatisticsGenerationResult",
    "StatisticsTypeResult",
    "build_statistics_pipeline",
]
