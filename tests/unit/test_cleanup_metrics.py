"""Unit tests for the cleanup_metrics job script.

Covers exit codes for the success, cleanup-failure and fatal paths, and the
size monitoring log lines.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from perfwatch.lib.config import Settings
from perfwatch.lib.errors import DatabaseError
from perfwatch.lib.distributed_tracing import NO_REQUEST_ID, get_correlation_id
from perfwatch.scripts.cleanup_metrics import check_database_size_and_alert, main


@pytest.fixture
def sqlite_settings(tmp_path):
  return Settings(database_url=f'sqlite+aiosqlite:///{tmp_path / "cleanup.db"}')


class TestCleanupJobExitCodes:
  """Exit code contract for the scheduled cleanup job."""

  def test_successful_cleanup_exits_with_code_0(self, sqlite_settings, caplog):
    caplog.set_level(logging.INFO)
    with patch('perfwatch.scripts.cleanup_metrics.get_settings', return_value=sqlite_settings):
      with pytest.raises(SystemExit) as exc_info:
        main(['--days', '7'])

    assert exc_info.value.code == 0
    assert any('Cleanup job completed successfully' in r.message for r in caplog.records)
    assert any('Retention period: 7 days' in r.message for r in caplog.records)

  def test_days_default_to_settings(self, tmp_path, caplog):
    caplog.set_level(logging.INFO)
    settings = Settings(
      database_url=f'sqlite+aiosqlite:///{tmp_path / "cleanup.db"}', retention_days=14
    )
    with patch('perfwatch.scripts.cleanup_metrics.get_settings', return_value=settings):
      with pytest.raises(SystemExit) as exc_info:
        main([])

    assert exc_info.value.code == 0
    assert any('Retention period: 14 days' in r.message for r in caplog.records)

  def test_cleanup_failure_exits_with_code_2(self, sqlite_settings, caplog):
    failing_cleanup = AsyncMock(side_effect=DatabaseError('Failed to clean up old metrics'))
    with (
      patch('perfwatch.scripts.cleanup_metrics.get_settings', return_value=sqlite_settings),
      patch('perfwatch.scripts.cleanup_metrics.MetricStore.cleanup', failing_cleanup),
    ):
      with pytest.raises(SystemExit) as exc_info:
        main(['--days', '30'])

    assert exc_info.value.code == 2
    assert any('Cleanup job failed' in r.message for r in caplog.records)

  @pytest.mark.parametrize('days', ['0', '-3', 'ten'])
  def test_invalid_days_is_a_usage_error_with_code_1(self, sqlite_settings, caplog, days):
    cleanup = AsyncMock(return_value=0)
    with (
      patch('perfwatch.scripts.cleanup_metrics.get_settings', return_value=sqlite_settings),
      patch('perfwatch.scripts.cleanup_metrics.MetricStore.cleanup', cleanup),
    ):
      with pytest.raises(SystemExit) as exc_info:
        main(['--days', days])

    assert exc_info.value.code == 1
    cleanup.assert_not_awaited()
    assert any('Invalid arguments' in r.message for r in caplog.records)

  def test_run_is_tagged_with_a_correlation_id(self, sqlite_settings, caplog):
    caplog.set_level(logging.INFO)
    with patch('perfwatch.scripts.cleanup_metrics.get_settings', return_value=sqlite_settings):
      with pytest.raises(SystemExit):
        main(['--days', '7'])

    [start] = [r.message for r in caplog.records if 'Starting metrics retention' in r.message]
    assert '(run ' in start
    assert get_correlation_id() == NO_REQUEST_ID

  def test_database_connection_failure_exits_with_code_1(self, sqlite_settings, caplog):
    with (
      patch('perfwatch.scripts.cleanup_metrics.get_settings', return_value=sqlite_settings),
      patch('perfwatch.scripts.cleanup_metrics.create_engine_from_settings') as mock_engine,
    ):
      mock_engine.side_effect = Exception('could not connect to server')

      with pytest.raises(SystemExit) as exc_info:
        main([])

    assert exc_info.value.code == 1
    assert any('Fatal error' in r.message for r in caplog.records)


class TestDatabaseSizeMonitoring:
  """Size thresholds checked after each cleanup."""

  def test_below_thresholds_logs_nothing(self, caplog):
    result = check_database_size_and_alert(total_count=1200)

    assert result == {
      'total_count': 1200,
      'warning_threshold_exceeded': False,
      'error_threshold_exceeded': False,
    }
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

  def test_warning_threshold_800k_samples(self, caplog):
    result = check_database_size_and_alert(total_count=800000)

    assert result['warning_threshold_exceeded'] is True
    assert result['error_threshold_exceeded'] is False
    warning_logs = [r for r in caplog.records if r.levelname == 'WARNING']
    assert warning_logs
    assert '800,000 samples' in warning_logs[0].message

  def test_error_threshold_1m_samples_with_alert_prefix(self, caplog):
    result = check_database_size_and_alert(total_count=1000000)

    assert result['error_threshold_exceeded'] is True
    error_logs = [r for r in caplog.records if r.levelname == 'ERROR']
    assert error_logs
    assert error_logs[0].message.startswith('ALERT:')
    assert '1,000,000' in error_logs[0].message
