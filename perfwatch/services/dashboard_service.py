"""Realtime dashboard and health view."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from perfwatch.lib.metrics import update_active_users_count
from perfwatch.lib.system_resources import get_system_resource_usage
from perfwatch.lib.timeutil import ensure_utc, utcnow
from perfwatch.models.dashboard import DashboardSnapshot, HealthReport, SystemResources
from perfwatch.models.performance_alert import AlertSeverity
from perfwatch.services.alert_service import AlertEvaluator, overall_status
from perfwatch.services.metric_store import MetricStore

logger = logging.getLogger(__name__)

# Request figures use a short window; alerts keep their own 1 hour window
REALTIME_WINDOW = timedelta(minutes=5)


class DashboardAggregator:
  """Combines recent request figures, live resources and current alerts."""

  def __init__(
    self,
    store: MetricStore,
    alert_evaluator: AlertEvaluator,
    resource_probe: Callable[[], SystemResources] = get_system_resource_usage,
    clock: Callable[[], datetime] = utcnow,
  ):
    self.store = store
    self.alert_evaluator = alert_evaluator
    self._resource_probe = resource_probe
    self._clock = clock

  async def get_dashboard(self) -> DashboardSnapshot:
    start_time = ensure_utc(self._clock()) - REALTIME_WINDOW

    summary = await self.store.summarize(start_time)
    active_users = await self.store.count_active_users(start_time)
    alerts = await self.alert_evaluator.check_alerts()

    update_active_users_count(active_users)

    return DashboardSnapshot(
      current_requests=summary.count,
      average_response_time=summary.average_response_time,
      error_rate=summary.error_rate,
      active_users=active_users,
      system_resources=self._resource_probe(),
      recent_alerts=alerts,
    )

  async def get_health(self) -> HealthReport:
    """Health derived from the dashboard and its alerts."""
    dashboard = await self.get_dashboard()
    alerts = dashboard.recent_alerts
    resources = dashboard.system_resources

    return HealthReport(
      status=overall_status(alerts),
      uptime=resources.uptime_seconds,
      memory_usage=resources.memory_rss_bytes,
      cpu_usage=resources.cpu_user_seconds + resources.cpu_system_seconds,
      active_alerts=len(alerts),
      critical_alerts=sum(1 for alert in alerts if alert.severity == AlertSeverity.CRITICAL),
      average_response_time=dashboard.average_response_time,
      error_rate=dashboard.error_rate,
    )
