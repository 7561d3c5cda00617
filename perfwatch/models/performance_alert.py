"""Alert models and the thresholds that trigger them."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from perfwatch.lib.config import MIB, Settings


class AlertType(str, Enum):
  RESPONSE_TIME = 'response_time'
  ERROR_RATE = 'error_rate'
  MEMORY_USAGE = 'memory_usage'


class AlertSeverity(str, Enum):
  LOW = 'low'
  MEDIUM = 'medium'
  HIGH = 'high'
  CRITICAL = 'critical'


class PerformanceAlert(BaseModel):
  """A threshold breach detected over the last hour.

  Alerts are recomputed on every check; nothing is persisted.
  """

  id: str = Field(..., description='"<type>_<epoch ms>"')
  type: AlertType
  threshold: float
  current_value: float
  message: str
  severity: AlertSeverity
  timestamp: datetime


class AlertThresholds(BaseModel):
  """Trigger levels for each alert type.

  Severity tiers scale with the trigger level: response time is critical
  above 2x and high above 1.5x; error rate is critical above 4x and high
  above 2x; memory is critical above 2x.
  """

  response_time_ms: float = Field(1000.0, gt=0)
  error_rate_percent: float = Field(5.0, gt=0)
  memory_bytes: float = Field(500 * MIB, gt=0)

  @classmethod
  def from_settings(cls, settings: Settings) -> 'AlertThresholds':
    return cls(
      response_time_ms=settings.alert_response_time_ms,
      error_rate_percent=settings.alert_error_rate_percent,
      memory_bytes=settings.alert_memory_bytes,
    )
