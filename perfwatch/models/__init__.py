"""Models package for database entities and Pydantic models."""

from perfwatch.models.dashboard import DashboardSnapshot, HealthReport, SystemResources
from perfwatch.models.performance_alert import (
  AlertSeverity,
  AlertThresholds,
  AlertType,
  PerformanceAlert,
)
from perfwatch.models.performance_report import (
  CachePerformance,
  DatabasePerformance,
  EndpointActivity,
  EndpointErrors,
  EndpointLatency,
  PerformanceReport,
  PerformanceSummary,
)
from perfwatch.models.performance_sample import (
  PerformanceSample,
  PerformanceSampleCreate,
  PerformanceSampleRead,
)

__all__ = [
  'AlertSeverity',
  'AlertThresholds',
  'AlertType',
  'CachePerformance',
  'DashboardSnapshot',
  'DatabasePerformance',
  'EndpointActivity',
  'EndpointErrors',
  'EndpointLatency',
  'HealthReport',
  'PerformanceAlert',
  'PerformanceReport',
  'PerformanceSample',
  'PerformanceSampleCreate',
  'PerformanceSampleRead',
  'PerformanceSummary',
  'SystemResources',
]
