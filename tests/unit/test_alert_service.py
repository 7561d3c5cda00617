"""Unit tests for AlertEvaluator thresholds, severities and overall status."""

from datetime import timedelta

import pytest

from perfwatch.lib.config import MIB
from perfwatch.models.performance_alert import (
  AlertSeverity,
  AlertThresholds,
  AlertType,
  PerformanceAlert,
)
from perfwatch.services.alert_service import AlertEvaluator, overall_status
from tests.conftest import FIXED_NOW, fixed_clock, insert_samples, make_sample


@pytest.fixture
def evaluator(store):
  return AlertEvaluator(store, clock=fixed_clock())


def _alert(severity: AlertSeverity) -> PerformanceAlert:
  return PerformanceAlert(
    id='response_time_1',
    type=AlertType.RESPONSE_TIME,
    threshold=1000,
    current_value=1200,
    message='slow',
    severity=severity,
    timestamp=FIXED_NOW,
  )


class TestCheckAlerts:
  async def test_empty_window_has_no_alerts(self, evaluator):
    assert await evaluator.check_alerts() == []

  async def test_healthy_traffic_has_no_alerts(self, store, evaluator):
    await insert_samples(store, [make_sample(response_time_ms=200) for _ in range(5)])

    assert await evaluator.check_alerts() == []

  async def test_single_slow_sample_raises_critical_response_time(self, store, evaluator):
    await insert_samples(store, [make_sample(response_time_ms=2500)])

    alerts = await evaluator.check_alerts()

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.type == AlertType.RESPONSE_TIME
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.threshold == 1000
    assert alert.current_value == pytest.approx(2500)
    assert alert.timestamp == FIXED_NOW
    assert alert.id == f'response_time_{int(FIXED_NOW.timestamp() * 1000)}'

  @pytest.mark.parametrize(
    'mean_ms, expected',
    [
      (1200, AlertSeverity.MEDIUM),
      (1600, AlertSeverity.HIGH),
      (2000, AlertSeverity.HIGH),
      (2001, AlertSeverity.CRITICAL),
    ],
  )
  async def test_response_time_severity_tiers(self, store, evaluator, mean_ms, expected):
    await insert_samples(store, [make_sample(response_time_ms=mean_ms)])

    alerts = await evaluator.check_alerts()

    assert [a.severity for a in alerts] == [expected]

  async def test_mean_exactly_at_threshold_does_not_alert(self, store, evaluator):
    await insert_samples(store, [make_sample(response_time_ms=1000)])

    assert await evaluator.check_alerts() == []

  @pytest.mark.parametrize(
    'errors, expected',
    [
      (1, AlertSeverity.MEDIUM),  # 10% is not above 10
      (2, AlertSeverity.HIGH),  # 20% is not above 20
      (3, AlertSeverity.CRITICAL),  # 30%
    ],
  )
  async def test_error_rate_severity_tiers(self, store, evaluator, errors, expected):
    samples = [make_sample(status_code=500) for _ in range(errors)]
    samples += [make_sample() for _ in range(10 - errors)]
    await insert_samples(store, samples)

    alerts = await evaluator.check_alerts()

    assert [a.type for a in alerts] == [AlertType.ERROR_RATE]
    assert alerts[0].severity == expected
    assert alerts[0].threshold == 5

  @pytest.mark.parametrize(
    'memory_mib, expected',
    [(600, AlertSeverity.HIGH), (1200, AlertSeverity.CRITICAL)],
  )
  async def test_memory_severity_tiers(self, store, evaluator, memory_mib, expected):
    await insert_samples(store, [make_sample(memory_usage_bytes=memory_mib * MIB)])

    alerts = await evaluator.check_alerts()

    assert [a.type for a in alerts] == [AlertType.MEMORY_USAGE]
    assert alerts[0].severity == expected

  async def test_alert_order_is_response_error_memory(self, store, evaluator):
    await insert_samples(
      store,
      [make_sample(response_time_ms=3000, status_code=500, memory_usage_bytes=2000 * MIB)],
    )

    alerts = await evaluator.check_alerts()

    assert [a.type for a in alerts] == [
      AlertType.RESPONSE_TIME,
      AlertType.ERROR_RATE,
      AlertType.MEMORY_USAGE,
    ]

  async def test_messages_name_value_and_threshold(self, store, evaluator):
    await insert_samples(
      store,
      [make_sample(response_time_ms=3000, status_code=500, memory_usage_bytes=2000 * MIB)],
    )

    alerts = await evaluator.check_alerts()

    assert [a.message for a in alerts] == [
      'Average response time is 3000.00ms, exceeding 1000ms threshold',
      'Error rate is 100.00%, exceeding 5% threshold',
      'Average memory usage is 2000.00MB, exceeding 500MB threshold',
    ]

  async def test_samples_older_than_an_hour_are_ignored(self, store, evaluator):
    await insert_samples(
      store, [make_sample(response_time_ms=5000, timestamp=FIXED_NOW - timedelta(minutes=61))]
    )

    assert await evaluator.check_alerts() == []

  async def test_custom_thresholds(self, store):
    evaluator = AlertEvaluator(
      store, AlertThresholds(response_time_ms=100), clock=fixed_clock()
    )
    await insert_samples(store, [make_sample(response_time_ms=160)])

    alerts = await evaluator.check_alerts()

    assert alerts[0].threshold == 100
    assert alerts[0].severity == AlertSeverity.HIGH


class TestOverallStatus:
  def test_no_alerts_is_healthy(self):
    assert overall_status([]) == 'healthy'

  @pytest.mark.parametrize('severity', [AlertSeverity.MEDIUM, AlertSeverity.HIGH])
  def test_medium_or_high_is_warning(self, severity):
    assert overall_status([_alert(severity)]) == 'warning'

  def test_low_only_is_healthy(self):
    assert overall_status([_alert(AlertSeverity.LOW)]) == 'healthy'

  def test_any_critical_wins(self):
    alerts = [_alert(AlertSeverity.MEDIUM), _alert(AlertSeverity.CRITICAL)]
    assert overall_status(alerts) == 'critical'
