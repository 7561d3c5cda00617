"""Pydantic models for aggregated performance reports."""

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, Field


class EndpointLatency(BaseModel):
  """Mean latency of one endpoint."""

  endpoint: str
  average_response_time: float = Field(..., description='Mean response time (ms)')
  request_count: int


class EndpointErrors(BaseModel):
  """Error volume of one endpoint."""

  endpoint: str
  error_count: int
  error_rate: float = Field(
    ..., description='Error samples of this endpoint as a percentage of ALL requests in the period'
  )


class DatabasePerformance(BaseModel):
  average_queries_per_request: float
  total_queries: int
  slow_requests: int = Field(..., description='Requests slower than the slow-request threshold')
  slow_queries: int = Field(0, description='Statements slower than the slow query threshold')


class CachePerformance(BaseModel):
  hit_rate: float = Field(..., description='hits / (hits + misses) as a percentage')
  total_hits: int
  total_misses: int


class EndpointTrend(BaseModel):
  """Direction of one endpoint's latency: last 10 samples against the 10 before."""

  endpoint: str
  trend: Literal['improving', 'stable', 'degrading']
  change_percent: float = Field(..., description='Change of the mean response time (%)')
  average_change: float = Field(..., description='change_percent spread over the 10 samples')
  confidence: float = Field(..., ge=0, le=100)


class PerformanceAnomaly(BaseModel):
  """A sample far outside its endpoint's response time distribution."""

  endpoint: str
  severity: Literal['low', 'medium', 'high', 'critical']
  type: Literal['spike', 'drop']
  description: str
  timestamp: datetime
  baseline: float = Field(..., description='Mean response time when the sample arrived (ms)')
  current: float = Field(..., description='Response time of the sample (ms)')


class PerformanceReport(BaseModel):
  """Aggregate report over a closed time range."""

  period: str = Field(..., description='"<start ISO> to <end ISO>"')
  total_requests: int
  average_response_time: float = Field(..., description='Mean response time (ms)')
  p95_response_time: float
  p99_response_time: float
  error_rate: float = Field(..., description='Error percentage 0-100')
  top_slow_endpoints: List[EndpointLatency]
  top_error_endpoints: List[EndpointErrors]
  database_performance: DatabasePerformance
  cache_performance: CachePerformance
  trends: List[EndpointTrend] = Field(default_factory=list)
  anomalies: List[PerformanceAnomaly] = Field(default_factory=list)


class PerformanceSummary(BaseModel):
  """Trailing 24 hour summary available to any authenticated caller."""

  total_requests: int
  average_response_time: float
  error_rate: float
  uptime: str = Field(..., description='Static availability figure')


class EndpointActivity(BaseModel):
  """Recent activity of one endpoint (trends view)."""

  endpoint: str
  average_response_time: float
  request_count: int
  last_seen: datetime
