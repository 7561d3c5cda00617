"""Performance API endpoints.

Admin-only reads of raw samples, reports, the realtime dashboard and alerts,
plus retention cleanup and export. Summary and health are available to any
authenticated caller.
"""

import csv
import io
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from perfwatch.lib.auth import Principal, get_admin_user, get_current_principal
from perfwatch.lib.errors import ValidationFailure
from perfwatch.lib.structured_logger import StructuredLogger
from perfwatch.lib.timeutil import ensure_utc, utcnow
from perfwatch.models.dashboard import DashboardSnapshot, HealthReport
from perfwatch.models.performance_alert import PerformanceAlert
from perfwatch.models.performance_report import (
  EndpointActivity,
  EndpointTrend,
  PerformanceAnomaly,
  PerformanceReport,
  PerformanceSummary,
)
from perfwatch.models.performance_sample import PerformanceSampleRead
from perfwatch.services.alert_service import AlertEvaluator
from perfwatch.services.dashboard_service import DashboardAggregator
from perfwatch.services.metric_store import MetricStore
from perfwatch.services.report_service import ReportGenerator
from perfwatch.services.trend_service import TrendAnalyzer

logger = StructuredLogger(__name__)

router = APIRouter(prefix='/api/v1/performance', tags=['Performance'])

EXPORT_FIELDS = list(PerformanceSampleRead.model_fields)


# ============================================================================
# Request/Response Models
# ============================================================================


class CleanupRequest(BaseModel):
  """Retention request."""

  days_to_keep: int = Field(30, ge=1, le=365, description='Keep samples newer than this many days')


class CleanupResponse(BaseModel):
  deleted_count: int = Field(..., description='Number of samples deleted')


# ============================================================================
# Dependencies
# ============================================================================


def get_store(request: Request) -> MetricStore:
  return request.app.state.store


def get_report_generator(request: Request) -> ReportGenerator:
  return request.app.state.report_generator


def get_alert_evaluator(request: Request) -> AlertEvaluator:
  return request.app.state.alert_evaluator


def get_trend_analyzer(request: Request) -> TrendAnalyzer:
  return request.app.state.trend_analyzer


def get_dashboard_aggregator(request: Request) -> DashboardAggregator:
  return request.app.state.dashboard


def _validated_range(start_date: datetime, end_date: datetime) -> tuple[datetime, datetime]:
  try:
    start_date, end_date = ensure_utc(start_date), ensure_utc(end_date)
  except ValueError as e:
    raise ValidationFailure(str(e)) from e
  if start_date > end_date:
    raise ValidationFailure('start_date must not be after end_date')
  return start_date, end_date


def _caller(principal: Principal) -> str:
  return principal.user_id or principal.api_key_id or 'unknown'


# ============================================================================
# Admin endpoints
# ============================================================================


@router.get('/metrics', response_model=List[PerformanceSampleRead])
async def get_metrics(
  start_date: datetime = Query(..., description='Range start (ISO 8601)'),
  end_date: datetime = Query(..., description='Range end (ISO 8601)'),
  endpoint: Optional[str] = Query(None, max_length=500, description='Endpoint filter'),
  admin_user: Principal = Depends(get_admin_user),
  store: MetricStore = Depends(get_store),
):
  """Raw samples in the range, newest first (at most 1000).

  Narrow the range to page through larger result sets.
  """
  start_date, end_date = _validated_range(start_date, end_date)

  logger.info(
    f'Performance metrics requested by admin user {_caller(admin_user)} '
    f'(start={start_date.isoformat()}, end={end_date.isoformat()}, endpoint={endpoint})'
  )

  samples = await store.query(start_date, end_date, endpoint)
  return [PerformanceSampleRead.model_validate(sample) for sample in samples]


@router.get('/report', response_model=PerformanceReport)
async def get_report(
  start_date: datetime = Query(..., description='Range start (ISO 8601)'),
  end_date: datetime = Query(..., description='Range end (ISO 8601)'),
  admin_user: Principal = Depends(get_admin_user),
  reports: ReportGenerator = Depends(get_report_generator),
):
  """Aggregated report with percentiles and top endpoints."""
  start_date, end_date = _validated_range(start_date, end_date)

  logger.info(f'Performance report requested by admin user {_caller(admin_user)}')
  return await reports.generate_report(start_date, end_date)


@router.get('/dashboard', response_model=DashboardSnapshot)
async def get_dashboard(
  admin_user: Principal = Depends(get_admin_user),
  dashboard: DashboardAggregator = Depends(get_dashboard_aggregator),
):
  """Realtime dashboard (last 5 minutes, alerts over the last hour)."""
  return await dashboard.get_dashboard()


@router.get('/alerts', response_model=List[PerformanceAlert])
async def get_alerts(
  admin_user: Principal = Depends(get_admin_user),
  alerts: AlertEvaluator = Depends(get_alert_evaluator),
):
  """Alerts currently triggered over the last hour."""
  return await alerts.check_alerts()


@router.post('/cleanup', response_model=CleanupResponse)
async def cleanup_metrics(
  body: CleanupRequest = CleanupRequest(),
  admin_user: Principal = Depends(get_admin_user),
  store: MetricStore = Depends(get_store),
):
  """Delete samples older than ``days_to_keep`` days."""
  logger.info(
    f'Metrics cleanup requested by admin user {_caller(admin_user)} '
    f'(days_to_keep={body.days_to_keep})'
  )

  deleted = await store.cleanup(body.days_to_keep)
  return CleanupResponse(deleted_count=deleted)


@router.get('/export')
async def export_metrics(
  start_date: datetime = Query(..., description='Range start (ISO 8601)'),
  end_date: datetime = Query(..., description='Range end (ISO 8601)'),
  format: Literal['json', 'csv'] = Query('json', description='Download format'),
  admin_user: Principal = Depends(get_admin_user),
  store: MetricStore = Depends(get_store),
):
  """Download raw samples in the range as a JSON or CSV attachment."""
  start_date, end_date = _validated_range(start_date, end_date)

  rows = [
    PerformanceSampleRead.model_validate(sample).model_dump(mode='json')
    for sample in await store.query(start_date, end_date)
  ]
  filename = f'performance-metrics-{utcnow().strftime("%Y%m%d%H%M%S")}.{format}'
  headers = {'Content-Disposition': f'attachment; filename="{filename}"'}

  logger.info(f'Exported {len(rows)} samples as {format} for admin user {_caller(admin_user)}')

  if format == 'json':
    return JSONResponse(content=rows, headers=headers)

  buffer = io.StringIO()
  writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS)
  writer.writeheader()
  writer.writerows(rows)
  return Response(content=buffer.getvalue(), media_type='text/csv', headers=headers)


@router.get('/trends', response_model=List[EndpointActivity])
async def get_trends(
  hours: int = Query(24, ge=1, le=24 * 30, description='Trailing window in hours'),
  admin_user: Principal = Depends(get_admin_user),
  reports: ReportGenerator = Depends(get_report_generator),
):
  """Per-endpoint activity over the trailing window, busiest first."""
  return await reports.endpoint_activity(hours)


@router.get('/trends/analysis', response_model=List[EndpointTrend])
async def get_trend_analysis(
  hours: int = Query(24, ge=1, le=24 * 30, description='Trailing window in hours'),
  admin_user: Principal = Depends(get_admin_user),
  analyzer: TrendAnalyzer = Depends(get_trend_analyzer),
):
  """Latency direction per endpoint (last 10 samples against the 10 before)."""
  return await analyzer.trends(hours)


@router.get('/anomalies', response_model=List[PerformanceAnomaly])
async def get_anomalies(
  hours: int = Query(24, ge=1, le=24 * 30, description='Trailing window in hours'),
  endpoint: Optional[str] = Query(None, max_length=500, description='Endpoint filter'),
  admin_user: Principal = Depends(get_admin_user),
  analyzer: TrendAnalyzer = Depends(get_trend_analyzer),
):
  """Response time spikes and drops, newest first (at most 100)."""
  return await analyzer.anomalies(hours, endpoint)


# ============================================================================
# Authenticated endpoints
# ============================================================================


@router.get('/summary', response_model=PerformanceSummary)
async def get_summary(
  principal: Principal = Depends(get_current_principal),
  reports: ReportGenerator = Depends(get_report_generator),
):
  """Trailing 24 hour summary."""
  return await reports.generate_summary()


@router.get('/health', response_model=HealthReport)
async def get_health(
  principal: Principal = Depends(get_current_principal),
  dashboard: DashboardAggregator = Depends(get_dashboard_aggregator),
):
  """Overall health derived from current alerts."""
  return await dashboard.get_health()
