"""Selection of the time window a statistics run covers."""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable

from telemetry_sync.domain.models import PeriodType, StatisticsPeriod
from telemetry_sync.logging import get_logger
from telemetry_sync.persistence.repositories import StatisticsQueryFilter
from telemetry_sync.utils.timestamps import format_timestamp, start_of_utc_day, utc_now

logger = get_logger(__name__, component="statistics")


@dataclass(frozen=True)
class ResolvedPeriod:
    """Period to aggregate and whether this is the first run ever."""

    is_initial_run: bool
    period: StatisticsPeriod


class StatisticsPeriodResolver:
    """
    Decides between an initial (historical) run and an incremental daily run.

    The decision is a single existence check against the statistics store:
    when no statistics document exists yet, or the check fails, the run
    covers everything from the historical floor date until now. Otherwise it
    covers the current UTC day up to now.
    """

    def __init__(
        self,
        statistics_source,
        historical_floor_date: date,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the resolver.

        Args:
            statistics_source: Object exposing ``query_statistics(filter, page_size)``
            historical_floor_date: First day covered by the initial run
            clock: Source of the current UTC time
        """
        self.statistics_source = statistics_source
        self.historical_floor_date = historical_floor_date
        self._clock = clock

    def resolve_period(self) -> ResolvedPeriod:
        now = self._clock()
        if self._has_existing_statistics():
            return ResolvedPeriod(
                is_initial_run=False,
                period=StatisticsPeriod(
                    start_date=format_timestamp(start_of_utc_day(now)),
                    end_date=format_timestamp(now),
                    period_type=PeriodType.DAILY,
                ),
            )

        floor = datetime.combine(self.historical_floor_date, time.min, tzinfo=timezone.utc)
        return ResolvedPeriod(
            is_initial_run=True,
            period=StatisticsPeriod(
                start_date=format_timestamp(floor),
                end_date=format_timestamp(now),
                period_type=PeriodType.CUSTOM,
            ),
        )

    def _has_existing_statistics(self) -> bool:
        try:
            page = self.statistics_source.query_statistics(StatisticsQueryFilter(), page_size=1)
        except Exception as e:
            logger.warning(
                f"Could not check for existing statistics, assuming initial run: {e}",
                extra={"event": "statistics.period.check_failed", "error_type": type(e).__name__},
            )
            return False

        exists = len(page.items) > 0
        logger.info(
            "Existing statistics found" if exists else "No existing statistics found",
            extra={"event": "statistics.period.resolved", "is_initial_run": not exists},
        )
        return exists
