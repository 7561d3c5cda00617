"""Shared test fixtures and utilities for all tests.

Store-backed unit tests run against an in-memory SQLite database (aiosqlite)
on the test's own event loop. API tests run the real application against a
temporary SQLite file, so data can be seeded before the TestClient starts its
own loop.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from perfwatch.app import create_app
from perfwatch.lib.config import Settings
from perfwatch.lib.database import create_session_factory, init_models
from perfwatch.models.dashboard import SystemResources
from perfwatch.models.performance_sample import PerformanceSample, PerformanceSampleCreate
from perfwatch.services.metric_store import MetricStore

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Sample helpers
# ============================================================================


def make_sample(**overrides) -> PerformanceSampleCreate:
  """Valid sample with sensible defaults; any field can be overridden."""
  data = {
    'endpoint': 'domains.search',
    'method': 'query',
    'response_time_ms': 100.0,
    'status_code': 200,
    'timestamp': FIXED_NOW - timedelta(minutes=1),
    'user_id': 'user-1',
    'memory_usage_bytes': 64 * 1024 * 1024,
    'cpu_usage_seconds': 1.5,
  }
  data.update(overrides)
  return PerformanceSampleCreate(**data)


async def insert_samples(store: MetricStore, samples: Iterable[PerformanceSampleCreate]) -> None:
  for sample in samples:
    await store.record(sample)


def fixed_clock(now: datetime = FIXED_NOW):
  return lambda: now


def static_resources() -> SystemResources:
  return SystemResources(
    memory_rss_bytes=128 * 1024 * 1024,
    memory_vms_bytes=512 * 1024 * 1024,
    cpu_user_seconds=3.0,
    cpu_system_seconds=1.0,
    uptime_seconds=3600.0,
  )


# ============================================================================
# In-memory store fixtures (unit tests)
# ============================================================================


@pytest.fixture
async def engine():
  """Fresh in-memory database per test; StaticPool keeps one shared connection."""
  engine = create_async_engine(
    'sqlite+aiosqlite://',
    poolclass=StaticPool,
    connect_args={'check_same_thread': False},
  )
  await init_models(engine)
  yield engine
  await engine.dispose()


@pytest.fixture
def session_factory(engine):
  return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> MetricStore:
  return MetricStore(session_factory, clock=fixed_clock())


# ============================================================================
# File database fixtures (contract and integration tests)
# ============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
  url = f'sqlite+aiosqlite:///{tmp_path / "perfwatch-test.db"}'

  async def create_schema():
    engine = create_async_engine(url)
    await init_models(engine)
    await engine.dispose()

  asyncio.run(create_schema())
  return url


@pytest.fixture
def test_settings(database_url) -> Settings:
  return Settings(database_url=database_url, retention_enabled=False)


@pytest.fixture
def seed(database_url):
  """Insert samples into the file database before the app starts."""

  def _seed(samples: Iterable[PerformanceSampleCreate]) -> None:
    async def run():
      engine = create_async_engine(database_url)
      await insert_samples(MetricStore(create_session_factory(engine)), samples)
      await engine.dispose()

    asyncio.run(run())

  return _seed


@pytest.fixture
def stored_samples(database_url):
  """Read back every stored sample, optionally for one endpoint."""

  def _read(endpoint: Optional[str] = None) -> List[PerformanceSample]:
    async def run():
      engine = create_async_engine(database_url)
      stmt = select(PerformanceSample)
      if endpoint:
        stmt = stmt.where(PerformanceSample.endpoint == endpoint)
      async with create_session_factory(engine)() as session:
        rows = list(await session.scalars(stmt))
      await engine.dispose()
      return rows

    return asyncio.run(run())

  return _read


@pytest.fixture
def app(test_settings):
  """Real perfwatch app bound to the temporary database."""
  return create_app(settings=test_settings)


@pytest.fixture
def client(app):
  """Test client with the lifespan running (store and services on app.state)."""
  with TestClient(app) as client:
    yield client


# ============================================================================
# Identity header fixtures
# ============================================================================


@pytest.fixture
def admin_headers():
  return {'X-Forwarded-User': 'admin-1', 'X-Forwarded-Role': 'admin'}


@pytest.fixture
def user_headers():
  return {'X-Forwarded-User': 'user-1', 'X-Forwarded-Role': 'buyer'}


@pytest.fixture
def api_key_headers():
  return {'X-Api-Key-Id': 'key-123'}
