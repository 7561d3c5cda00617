"""Integration tests for automatic sample collection.

Runs the real app (middleware, store and SQLite file database) with a few
extra marketplace-style routes and checks what ends up in the store.
"""

import asyncio

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from perfwatch.lib.errors import ErrorCode, ProcedureError
from perfwatch.lib.metrics_middleware import UNMATCHED_ENDPOINT, counting_cache, counting_client

DOMAIN_ROUTE = '/api/domains/{name}'


class InMemoryCache:
  def __init__(self):
    self.data = {'domain:example.com': {'price': 1200}}

  async def get(self, key):
    return self.data.get(key)

  async def set(self, key, value):
    self.data[key] = value


class StubQueryClient:
  async def execute(self, statement):
    return []

  async def scalar(self, statement):
    return 0


@pytest.fixture
def marketplace_app(app):
  cache = InMemoryCache()

  @app.get('/api/domains/{name}')
  async def get_domain(name: str, request: Request):
    db = counting_client(request, StubQueryClient())
    lookups = counting_cache(request, cache)
    listing = await lookups.get(f'domain:{name}')
    if listing is None:
      await db.execute('SELECT * FROM domains WHERE name = :name')
      await db.scalar('SELECT count(*) FROM bids')
      listing = {'price': 0}
      await lookups.set(f'domain:{name}', listing)
    return listing

  @app.get('/api/listings/{listing_id}')
  async def get_listing(listing_id: int):
    raise ProcedureError(ErrorCode.NOT_FOUND, f'Listing {listing_id} not found')

  @app.post('/api/bids')
  async def place_bid():
    raise RuntimeError('payment provider unavailable')

  return app


@pytest.fixture
def marketplace_client(marketplace_app):
  with TestClient(marketplace_app, raise_server_exceptions=False) as client:
    yield client


def test_successful_request_is_recorded_with_identity(
  marketplace_client, user_headers, stored_samples
):
  response = marketplace_client.get('/api/domains/example.com', headers=user_headers)

  assert response.status_code == 200
  [sample] = stored_samples(DOMAIN_ROUTE)
  assert sample.method == 'GET'
  assert sample.status_code == 200
  assert sample.user_id == 'user-1'
  assert sample.response_time_ms >= 0
  assert sample.memory_usage_bytes > 0
  assert (sample.cache_hits, sample.cache_misses) == (1, 0)
  assert sample.database_query_count == 0


def test_cache_miss_and_queries_are_counted(marketplace_client, api_key_headers, stored_samples):
  marketplace_client.get('/api/domains/new.io', headers=api_key_headers)

  [sample] = stored_samples(DOMAIN_ROUTE)
  assert sample.cache_misses == 1
  assert sample.cache_hits == 0
  assert sample.database_query_count == 2
  assert sample.api_key_id == 'key-123'
  assert sample.user_id is None


def test_counters_are_per_request(marketplace_client, user_headers, stored_samples):
  marketplace_client.get('/api/domains/fresh.dev', headers=user_headers)
  marketplace_client.get('/api/domains/fresh.dev', headers=user_headers)

  samples = sorted(stored_samples(DOMAIN_ROUTE), key=lambda s: s.timestamp)
  assert [(s.cache_hits, s.cache_misses, s.database_query_count) for s in samples] == [
    (0, 1, 2),
    (1, 0, 0),
  ]


def test_procedure_error_is_recorded_with_mapped_status(marketplace_client, stored_samples):
  response = marketplace_client.get('/api/listings/42')

  assert response.status_code == 404
  assert response.json()['detail']['error_code'] == 'NOT_FOUND'
  [sample] = stored_samples('/api/listings/{listing_id}')
  assert sample.status_code == 404
  assert sample.user_id is None


def test_unhandled_error_is_recorded_as_500(marketplace_client, user_headers, stored_samples):
  response = marketplace_client.post('/api/bids', headers=user_headers)

  assert response.status_code == 500
  [sample] = stored_samples('/api/bids')
  assert sample.status_code == 500
  assert sample.method == 'POST'
  assert sample.is_error


def test_unauthorized_api_call_is_recorded(marketplace_client, stored_samples):
  response = marketplace_client.get('/api/v1/performance/summary')

  assert response.status_code == 401
  [sample] = stored_samples('/api/v1/performance/summary')
  assert sample.status_code == 401


@pytest.mark.parametrize('path', ['/health', '/metrics'])
def test_operational_endpoints_are_not_recorded(marketplace_client, user_headers, stored_samples, path):
  marketplace_client.get(path, headers=user_headers)

  assert stored_samples(path) == []


def test_recorded_requests_show_up_in_the_summary(marketplace_client, user_headers):
  for _ in range(3):
    marketplace_client.get('/api/domains/example.com', headers=user_headers)
  marketplace_client.get('/api/listings/7', headers=user_headers)

  summary = marketplace_client.get('/api/v1/performance/summary', headers=user_headers).json()

  assert summary['total_requests'] == 4
  assert summary['error_rate'] == 25.0


def test_store_write_failure_does_not_fail_the_request(marketplace_app, user_headers):
  with TestClient(marketplace_app) as client:

    class BrokenStore:
      async def record(self, sample):
        raise RuntimeError('disk full')

    marketplace_app.state.store = BrokenStore()
    response = client.get('/api/domains/example.com', headers=user_headers)

  assert response.status_code == 200
  assert response.json() == {'price': 1200}


def test_samples_are_grouped_by_route_template(marketplace_client, user_headers, stored_samples):
  for name in ('a.com', 'b.com', 'c.com'):
    marketplace_client.get(f'/api/domains/{name}', headers=user_headers)

  samples = stored_samples()

  assert {s.endpoint for s in samples} == {DOMAIN_ROUTE}
  assert len(samples) == 3


def test_overlong_path_still_records_a_sample(marketplace_client, user_headers, stored_samples):
  response = marketplace_client.get('/api/domains/' + 'x' * 600, headers=user_headers)

  assert response.status_code == 200
  [sample] = stored_samples()
  assert sample.endpoint == DOMAIN_ROUTE


def test_unmatched_path_is_recorded_under_one_placeholder(
  marketplace_client, user_headers, stored_samples
):
  for path in ('/wp-login.php', '/' + 'y' * 600, '/api/nothing-here'):
    response = marketplace_client.get(path, headers=user_headers)
    assert response.status_code == 404

  samples = stored_samples()

  assert len(samples) == 3
  assert {s.endpoint for s in samples} == {UNMATCHED_ENDPOINT}
  assert all(s.status_code == 404 for s in samples)


def test_slow_queries_are_counted(marketplace_app, test_settings, user_headers, stored_samples):
  class SlowQueryClient:
    async def execute(self, statement):
      await asyncio.sleep(0.05)
      return []

  @marketplace_app.get('/api/reports/{report_id}')
  async def get_report(report_id: int, request: Request):
    db = counting_client(request, SlowQueryClient())
    await db.execute('SELECT * FROM sales WHERE report_id = :report_id')
    return {'id': report_id}

  marketplace_app.state.settings = test_settings.model_copy(update={'slow_query_ms': 10.0})
  with TestClient(marketplace_app) as client:
    client.get('/api/reports/3', headers=user_headers)

  [sample] = stored_samples('/api/reports/{report_id}')
  assert sample.database_query_count == 1
  assert sample.slow_query_count == 1
