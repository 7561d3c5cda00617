"""FastAPI application for perfwatch."""

from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfwatch.lib.auth import get_current_principal, principal_from_headers
from perfwatch.lib.config import Settings, get_settings
from perfwatch.lib.database import (
  create_engine_from_settings,
  create_session_factory,
  dispose_engine,
  init_models,
  is_sqlite_url,
)
from perfwatch.lib.distributed_tracing import reset_correlation_id, set_correlation_id
from perfwatch.lib.errors import ProcedureError
from perfwatch.lib.metrics_middleware import MetricsCollectionMiddleware
from perfwatch.lib.structured_logger import StructuredLogger, configure_logging
from perfwatch.models.performance_alert import AlertThresholds
from perfwatch.routers import router
from perfwatch.services.alert_service import AlertEvaluator
from perfwatch.services.dashboard_service import DashboardAggregator
from perfwatch.services.metric_store import MetricStore
from perfwatch.services.report_service import ReportGenerator
from perfwatch.services.retention_service import RetentionScheduler

logger = StructuredLogger(__name__)


def build_services(
  app: FastAPI, settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> None:
  """Construct the store and services and attach them to ``app.state``."""
  store = MetricStore(session_factory, query_timeout_seconds=settings.query_timeout_seconds)
  alert_evaluator = AlertEvaluator(store, AlertThresholds.from_settings(settings))
  report_generator = ReportGenerator(store, slow_request_ms=settings.slow_request_ms)

  app.state.store = store
  app.state.report_generator = report_generator
  app.state.trend_analyzer = report_generator.trend_analyzer
  app.state.alert_evaluator = alert_evaluator
  app.state.dashboard = DashboardAggregator(store, alert_evaluator)
  app.state.retention = RetentionScheduler(
    store,
    days_to_keep=settings.retention_days,
    interval_seconds=settings.retention_interval_seconds,
  )


def create_app(
  settings: Optional[Settings] = None,
  session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
  """Application factory.

  Args:
      settings: Explicit settings; defaults to ``get_settings()``
      session_factory: Pre-built session factory (tests); when omitted the
          lifespan creates and later disposes its own engine
  """
  if settings is None:
    settings = get_settings()
  configure_logging(settings.log_level)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    engine = None
    factory = session_factory
    if factory is None:
      engine = create_engine_from_settings(settings)
      if is_sqlite_url(settings.database_url):
        await init_models(engine)
      factory = create_session_factory(engine)

    build_services(app, settings, factory)
    if settings.retention_enabled:
      await app.state.retention.start()

    logger.info(f'perfwatch started (environment={settings.environment})')
    try:
      yield
    finally:
      await app.state.retention.stop()
      if engine is not None:
        await dispose_engine(engine)

  app = FastAPI(
    title='perfwatch',
    description='Performance monitoring API: samples, reports, alerts and realtime dashboard',
    version='0.1.0',
    lifespan=lifespan,
  )
  app.state.settings = settings

  # Inner middleware: sees the correlation id and principal set below
  app.add_middleware(MetricsCollectionMiddleware)

  @app.middleware('http')
  async def add_request_context(request: Request, call_next):
    """Inject correlation ID and caller identity into the request.

    - Extracts X-Correlation-ID header or generates new UUID
    - Sets correlation ID in context for logging
    - Stores the forwarded principal on request.state
    - Adds X-Correlation-ID to response headers
    """
    correlation_id = request.headers.get('X-Correlation-ID') or str(uuid4())
    token = set_correlation_id(correlation_id)
    request.state.correlation_id = correlation_id
    request.state.principal = principal_from_headers(request)

    try:
      response = await call_next(request)
    finally:
      reset_correlation_id(token)

    response.headers['X-Correlation-ID'] = correlation_id
    return response

  @app.get('/health')
  async def health_root():
    """Liveness check for load balancers (not monitored)."""
    return {'status': 'healthy'}

  @app.get('/metrics', dependencies=[Depends(get_current_principal)])
  async def metrics_root():
    """Prometheus exposition of perfwatch's own operational metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

  # ============================================================================
  # EXCEPTION HANDLERS
  # ============================================================================

  @app.exception_handler(ProcedureError)
  async def procedure_error_handler(request: Request, exc: ProcedureError):
    """Typed errors become ``{"detail": {...}}`` with the mapped status."""
    detail = {
      'error_code': exc.error_code,
      'message': exc.message,
      'status_code': exc.status_code,
    }
    if exc.cause is not None and not settings.is_production:
      detail['cause'] = repr(exc.cause)

    if exc.status_code >= 500:
      logger.error(
        f'{exc.error_code}: {exc.message}', path=request.url.path, error_code=exc.error_code
      )

    return JSONResponse(status_code=exc.status_code, content={'detail': detail})

  @app.exception_handler(RequestValidationError)
  async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed parameters are client errors: 400 instead of FastAPI's 422."""
    return JSONResponse(
      status_code=400,
      content={
        'detail': {
          'error_code': 'VALIDATION_ERROR',
          'message': 'Invalid request parameters',
          'status_code': 400,
          'errors': jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
        }
      },
    )

  app.include_router(router)

  return app
