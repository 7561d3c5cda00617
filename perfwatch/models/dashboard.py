"""Dashboard and health payloads."""

from typing import List, Literal

from pydantic import BaseModel, Field

from perfwatch.models.performance_alert import PerformanceAlert

HealthStatus = Literal['healthy', 'warning', 'critical']


class SystemResources(BaseModel):
  """Live resource usage of the current process."""

  memory_rss_bytes: int
  memory_vms_bytes: int
  cpu_user_seconds: float
  cpu_system_seconds: float
  uptime_seconds: float


class DashboardSnapshot(BaseModel):
  """Realtime view: request figures over the last 5 minutes."""

  current_requests: int = Field(..., description='Samples in the last 5 minutes')
  average_response_time: float
  error_rate: float
  active_users: int = Field(..., description='Distinct users in the last 5 minutes')
  system_resources: SystemResources
  recent_alerts: List[PerformanceAlert] = Field(..., description='Alerts over the last hour')


class HealthReport(BaseModel):
  status: HealthStatus
  uptime: float = Field(..., description='Process uptime in seconds')
  memory_usage: int = Field(..., description='Resident memory in bytes')
  cpu_usage: float = Field(..., description='User plus system CPU seconds')
  active_alerts: int
  critical_alerts: int
  average_response_time: float
  error_rate: float
