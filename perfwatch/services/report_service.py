"""Report generation over stored performance samples."""

import logging
from datetime import datetime, timedelta
from typing import Callable, List

from perfwatch.lib.errors import ValidationFailure
from perfwatch.lib.timeutil import ensure_utc, utcnow
from perfwatch.models.performance_report import (
  CachePerformance,
  DatabasePerformance,
  EndpointActivity,
  EndpointErrors,
  PerformanceReport,
  PerformanceSummary,
)
from perfwatch.services.metric_store import DEFAULT_SLOW_REQUEST_MS, MetricStore
from perfwatch.services.trend_service import TrendAnalyzer

logger = logging.getLogger(__name__)

TOP_ENDPOINTS = 10
SUMMARY_WINDOW = timedelta(hours=24)
STATIC_UPTIME = '99.9%'


def percentile(sorted_values: List[float], p: float) -> float:
  """Nearest-rank percentile of ascending values.

  Args:
      sorted_values: Values sorted ascending
      p: Percentile (0.0 to 1.0)

  Returns:
      Value at index floor(n * p), clamped to the last element; 0 when empty
  """
  if not sorted_values:
    return 0.0
  index = int(len(sorted_values) * p)
  return sorted_values[min(index, len(sorted_values) - 1)]


class ReportGenerator:
  """Builds performance reports and summaries from the metric store."""

  def __init__(
    self,
    store: MetricStore,
    clock: Callable[[], datetime] = utcnow,
    slow_request_ms: float = DEFAULT_SLOW_REQUEST_MS,
  ):
    self.store = store
    self._clock = clock
    self.slow_request_ms = slow_request_ms
    self.trend_analyzer = TrendAnalyzer(store, clock)

  async def generate_report(self, start_time: datetime, end_time: datetime) -> PerformanceReport:
    """Aggregate all samples in ``[start_time, end_time]``.

    Raises:
        ValidationFailure: start_time is after end_time, or either bound is
            out of range once converted to UTC
        DatabaseError: A store read failed or timed out
    """
    try:
      start_time, end_time = ensure_utc(start_time), ensure_utc(end_time)
    except ValueError as e:
      raise ValidationFailure(str(e)) from e
    if start_time > end_time:
      raise ValidationFailure('start_date must not be after end_date')

    summary = await self.store.summarize(start_time, end_time, slow_request_ms=self.slow_request_ms)
    response_times = await self.store.response_times(start_time, end_time)
    slowest = await self.store.slowest_endpoints(start_time, end_time, limit=TOP_ENDPOINTS)
    failing = await self.store.error_endpoints(start_time, end_time, limit=TOP_ENDPOINTS)
    trends, anomalies = await self.trend_analyzer.analyze(start_time, end_time)

    # Endpoint error rates are relative to all requests in the period
    top_error_endpoints = [
      EndpointErrors(
        endpoint=endpoint,
        error_count=error_count,
        error_rate=error_count * 100 / summary.count if summary.count else 0.0,
      )
      for endpoint, error_count in failing
    ]

    cache_lookups = summary.cache_hits + summary.cache_misses

    report = PerformanceReport(
      period=f'{start_time.isoformat()} to {end_time.isoformat()}',
      total_requests=summary.count,
      average_response_time=summary.average_response_time,
      p95_response_time=percentile(response_times, 0.95),
      p99_response_time=percentile(response_times, 0.99),
      error_rate=summary.error_rate,
      top_slow_endpoints=slowest,
      top_error_endpoints=top_error_endpoints,
      database_performance=DatabasePerformance(
        average_queries_per_request=summary.average_queries,
        total_queries=summary.total_queries,
        slow_requests=summary.slow_count,
        slow_queries=summary.slow_queries,
      ),
      cache_performance=CachePerformance(
        hit_rate=summary.cache_hits / cache_lookups * 100 if cache_lookups else 0.0,
        total_hits=summary.cache_hits,
        total_misses=summary.cache_misses,
      ),
      trends=trends,
      anomalies=anomalies,
    )

    logger.info(f'Generated performance report for {report.period}: {summary.count} requests')
    return report

  async def generate_summary(self) -> PerformanceSummary:
    """Trailing 24 hour summary."""
    summary = await self.store.summarize(ensure_utc(self._clock()) - SUMMARY_WINDOW)
    return PerformanceSummary(
      total_requests=summary.count,
      average_response_time=summary.average_response_time,
      error_rate=summary.error_rate,
      uptime=STATIC_UPTIME,
    )

  async def endpoint_activity(self, hours: int = 24) -> List[EndpointActivity]:
    """Per-endpoint activity over the trailing ``hours``."""
    if hours < 1:
      raise ValidationFailure('hours must be at least 1')
    start_time = ensure_utc(self._clock()) - timedelta(hours=hours)
    return await self.store.endpoint_activity(start_time)
