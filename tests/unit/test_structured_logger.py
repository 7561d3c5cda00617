"""Unit tests for JSON logging and correlation id propagation."""

import json
import logging

from perfwatch.lib.distributed_tracing import (
  generate_correlation_id,
  get_correlation_id,
  reset_correlation_id,
  set_correlation_id,
)
from perfwatch.lib.structured_logger import JSONFormatter, log_event, log_request


def test_log_request_includes_correlation_id(capsys):
  token = set_correlation_id('corr-1')
  try:
    log_request('/api/domains', 'GET', 200, 12.34567, user_id='user-1')
  finally:
    reset_correlation_id(token)

  entry = json.loads(capsys.readouterr().out)
  assert entry['request_id'] == 'corr-1'
  assert entry['endpoint'] == '/api/domains'
  assert entry['status_code'] == 200
  assert entry['duration_ms'] == 12.346
  assert entry['user_id'] == 'user-1'


def test_log_event_drops_sensitive_keys(capsys):
  log_event('retention.cleanup', context={'deleted_count': 3, 'token': 'secret', 'password': 'x'})

  entry = json.loads(capsys.readouterr().out)
  assert entry['event'] == 'retention.cleanup'
  assert entry['deleted_count'] == 3
  assert 'token' not in entry
  assert 'password' not in entry


def test_formatter_adds_context_fields():
  record = logging.LogRecord('perfwatch.test', logging.WARNING, __file__, 1, 'slow call', None, None)
  record.endpoint = 'domains.search'
  record.duration_ms = 1500

  entry = json.loads(JSONFormatter().format(record))

  assert entry['level'] == 'WARNING'
  assert entry['message'] == 'slow call'
  assert entry['endpoint'] == 'domains.search'
  assert entry['duration_ms'] == 1500


def test_correlation_id_resets_to_previous_value():
  outer = set_correlation_id('outer')
  inner = set_correlation_id(generate_correlation_id())
  reset_correlation_id(inner)

  assert get_correlation_id() == 'outer'
  reset_correlation_id(outer)
