"""Latency trends and anomaly detection over stored samples.

Both work per endpoint on its most recent samples in a window, replayed in
arrival order: a trend compares the last 10 samples with the 10 before, and
each sample is checked against the mean and standard deviation of the samples
seen up to and including it.
"""

import logging
import statistics
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from perfwatch.lib.errors import ValidationFailure
from perfwatch.lib.timeutil import ensure_utc, utcnow
from perfwatch.models.performance_report import EndpointTrend, PerformanceAnomaly
from perfwatch.services.metric_store import MetricStore

logger = logging.getLogger(__name__)

TREND_WINDOW = 10
STABLE_CHANGE_PERCENT = 5.0
MIN_ANOMALY_SAMPLES = 5
SPIKE_DEVIATIONS = 3
CRITICAL_DEVIATIONS = 5
MAX_ANOMALIES = 100
SAMPLES_PER_ENDPOINT = 100

Sample = Tuple[datetime, float]


def classify_trend(endpoint: str, durations: Sequence[float]) -> Optional[EndpointTrend]:
  """Trend of the last 10 durations against the 10 before them.

  Args:
      endpoint: Endpoint the durations belong to
      durations: Response times, oldest first

  Returns:
      None when fewer than 20 durations are available
  """
  if len(durations) < 2 * TREND_WINDOW:
    return None

  recent = statistics.fmean(durations[-TREND_WINDOW:])
  previous = statistics.fmean(durations[-2 * TREND_WINDOW:-TREND_WINDOW])

  if previous:
    change_percent = (recent - previous) / previous * 100
  else:
    change_percent = 0.0 if recent == 0 else 100.0

  if change_percent < -STABLE_CHANGE_PERCENT:
    trend = 'improving'
  elif change_percent > STABLE_CHANGE_PERCENT:
    trend = 'degrading'
  else:
    trend = 'stable'

  return EndpointTrend(
    endpoint=endpoint,
    trend=trend,
    change_percent=change_percent,
    average_change=change_percent / TREND_WINDOW,
    confidence=min(100.0, max(0.0, 100 - abs(change_percent))),
  )


def detect_anomalies(endpoint: str, samples: Sequence[Sample]) -> List[PerformanceAnomaly]:
  """Spikes and drops among ``samples`` (oldest first).

  A sample more than 3 standard deviations above the running mean is a
  spike (critical beyond 5), one more than 3 below it is a drop. Nothing is
  flagged until 5 samples have been seen.
  """
  anomalies = []
  durations: List[float] = []

  for timestamp, duration in samples:
    durations.append(duration)
    if len(durations) < MIN_ANOMALY_SAMPLES:
      continue

    mean = statistics.fmean(durations)
    deviation = statistics.pstdev(durations, mu=mean)
    if deviation == 0:
      continue

    if duration > mean + SPIKE_DEVIATIONS * deviation:
      severity = 'critical' if duration > mean + CRITICAL_DEVIATIONS * deviation else 'high'
      anomalies.append(PerformanceAnomaly(
        endpoint=endpoint,
        severity=severity,
        type='spike',
        description=f'Response time spike detected: {duration:.2f}ms (baseline: {mean:.2f}ms)',
        timestamp=timestamp,
        baseline=mean,
        current=duration,
      ))
    elif 0 < duration < mean - SPIKE_DEVIATIONS * deviation:
      anomalies.append(PerformanceAnomaly(
        endpoint=endpoint,
        severity='low',
        type='drop',
        description=f'Unusually fast response: {duration:.2f}ms (baseline: {mean:.2f}ms)',
        timestamp=timestamp,
        baseline=mean,
        current=duration,
      ))

  return anomalies


class TrendAnalyzer:
  """Per-endpoint trends and anomalies read from the metric store."""

  def __init__(
    self,
    store: MetricStore,
    clock: Callable[[], datetime] = utcnow,
    samples_per_endpoint: int = SAMPLES_PER_ENDPOINT,
  ):
    self.store = store
    self._clock = clock
    self.samples_per_endpoint = samples_per_endpoint

  async def _samples(
    self, start_time: datetime, end_time: Optional[datetime] = None, endpoint: Optional[str] = None
  ) -> Dict[str, List[Sample]]:
    return await self.store.recent_samples_by_endpoint(
      start_time, end_time, per_endpoint=self.samples_per_endpoint, endpoint=endpoint
    )

  def _since(self, hours: int) -> datetime:
    if hours < 1:
      raise ValidationFailure('hours must be at least 1')
    return ensure_utc(self._clock()) - timedelta(hours=hours)

  async def analyze(
    self, start_time: datetime, end_time: Optional[datetime] = None
  ) -> Tuple[List[EndpointTrend], List[PerformanceAnomaly]]:
    """Trends and anomalies of every endpoint active in the window (one store read)."""
    samples = await self._samples(start_time, end_time)
    return self._trends_of(samples), self._anomalies_of(samples)

  async def trends(self, hours: int = 24) -> List[EndpointTrend]:
    """Trends of endpoints with at least 20 samples in the trailing ``hours``."""
    return self._trends_of(await self._samples(self._since(hours)))

  async def anomalies(self, hours: int = 24, endpoint: Optional[str] = None) -> List[PerformanceAnomaly]:
    """Anomalies in the trailing ``hours``, newest first (at most 100)."""
    return self._anomalies_of(await self._samples(self._since(hours), endpoint=endpoint))

  @staticmethod
  def _trends_of(samples: Dict[str, List[Sample]]) -> List[EndpointTrend]:
    trends = []
    for endpoint, endpoint_samples in samples.items():
      trend = classify_trend(endpoint, [duration for _, duration in endpoint_samples])
      if trend is not None:
        trends.append(trend)
    # Largest movement first
    return sorted(trends, key=lambda t: (-abs(t.change_percent), t.endpoint))

  @staticmethod
  def _anomalies_of(samples: Dict[str, List[Sample]]) -> List[PerformanceAnomaly]:
    anomalies = []
    for endpoint, endpoint_samples in samples.items():
      anomalies.extend(detect_anomalies(endpoint, endpoint_samples))
    anomalies.sort(key=lambda a: a.timestamp, reverse=True)

    if anomalies:
      logger.info(f'Detected {len(anomalies)} performance anomalies across {len(samples)} endpoints')
    return anomalies[:MAX_ANOMALIES]
