"""Threshold alerts over the last hour of samples.

Evaluation is stateless: every check recomputes alerts from the store, so
there is no acknowledge/resolve lifecycle and no deduplication across checks.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from perfwatch.lib.config import MIB
from perfwatch.lib.structured_logger import log_event
from perfwatch.lib.timeutil import ensure_utc, utcnow
from perfwatch.models.dashboard import HealthStatus
from perfwatch.models.performance_alert import (
  AlertSeverity,
  AlertThresholds,
  AlertType,
  PerformanceAlert,
)
from perfwatch.services.metric_store import MetricStore

logger = logging.getLogger(__name__)

ALERT_WINDOW = timedelta(hours=1)


def overall_status(alerts: Iterable[PerformanceAlert]) -> HealthStatus:
  """critical if any alert is critical, warning if any is high or medium."""
  severities = {alert.severity for alert in alerts}
  if AlertSeverity.CRITICAL in severities:
    return 'critical'
  if AlertSeverity.HIGH in severities or AlertSeverity.MEDIUM in severities:
    return 'warning'
  return 'healthy'


class AlertEvaluator:
  """Checks response time, error rate and memory against thresholds."""

  def __init__(
    self,
    store: MetricStore,
    thresholds: Optional[AlertThresholds] = None,
    clock: Callable[[], datetime] = utcnow,
  ):
    self.store = store
    self.thresholds = thresholds or AlertThresholds()
    self._clock = clock

  def _alert(
    self,
    alert_type: AlertType,
    threshold: float,
    current_value: float,
    message: str,
    severity: AlertSeverity,
    now: datetime,
  ) -> PerformanceAlert:
    epoch_ms = int(now.timestamp() * 1000)
    return PerformanceAlert(
      id=f'{alert_type.value}_{epoch_ms}',
      type=alert_type,
      threshold=threshold,
      current_value=current_value,
      message=message,
      severity=severity,
      timestamp=now,
    )

  def _response_time_severity(self, value: float) -> AlertSeverity:
    limit = self.thresholds.response_time_ms
    if value > limit * 2:
      return AlertSeverity.CRITICAL
    if value > limit * 1.5:
      return AlertSeverity.HIGH
    return AlertSeverity.MEDIUM

  def _error_rate_severity(self, value: float) -> AlertSeverity:
    limit = self.thresholds.error_rate_percent
    if value > limit * 4:
      return AlertSeverity.CRITICAL
    if value > limit * 2:
      return AlertSeverity.HIGH
    return AlertSeverity.MEDIUM

  def _memory_severity(self, value: float) -> AlertSeverity:
    if value > self.thresholds.memory_bytes * 2:
      return AlertSeverity.CRITICAL
    return AlertSeverity.HIGH

  async def check_alerts(self) -> List[PerformanceAlert]:
    """Alerts for the last hour, ordered response time, error rate, memory.

    Returns:
        Triggered alerts; empty when the window has no samples

    Raises:
        DatabaseError: The store read failed or timed out
    """
    now = ensure_utc(self._clock())
    summary = await self.store.summarize(now - ALERT_WINDOW)

    if summary.count == 0:
      return []

    alerts = []
    limits = self.thresholds

    if summary.average_response_time > limits.response_time_ms:
      alerts.append(self._alert(
        AlertType.RESPONSE_TIME,
        limits.response_time_ms,
        summary.average_response_time,
        f'Average response time is {summary.average_response_time:.2f}ms, '
        f'exceeding {limits.response_time_ms:g}ms threshold',
        self._response_time_severity(summary.average_response_time),
        now,
      ))

    if summary.error_rate > limits.error_rate_percent:
      alerts.append(self._alert(
        AlertType.ERROR_RATE,
        limits.error_rate_percent,
        summary.error_rate,
        f'Error rate is {summary.error_rate:.2f}%, '
        f'exceeding {limits.error_rate_percent:g}% threshold',
        self._error_rate_severity(summary.error_rate),
        now,
      ))

    if summary.average_memory_bytes > limits.memory_bytes:
      alerts.append(self._alert(
        AlertType.MEMORY_USAGE,
        limits.memory_bytes,
        summary.average_memory_bytes,
        f'Average memory usage is {summary.average_memory_bytes / MIB:.2f}MB, '
        f'exceeding {limits.memory_bytes / MIB:g}MB threshold',
        self._memory_severity(summary.average_memory_bytes),
        now,
      ))

    if alerts:
      log_event(
        'alerts.triggered',
        level='WARNING',
        context={
          'count': len(alerts),
          'types': [alert.type.value for alert in alerts],
          'severities': [alert.severity.value for alert in alerts],
        },
      )

    return alerts
