"""Retention cleanup job script.

Deletes performance samples older than the retention period, then checks how
many samples remain and raises size alerts in the log.

Designed to run from a scheduler (cron, Kubernetes CronJob) once a day.
Entry point: main() function (``perfwatch-cleanup`` console script)

Exit codes:
  0: cleanup succeeded
  1: fatal error (invalid arguments or configuration, database unreachable)
  2: cleanup failed
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, Optional

from sqlalchemy import text

from perfwatch.lib.config import Settings, get_settings
from perfwatch.lib.database import (
  create_engine_from_settings,
  create_session_factory,
  dispose_engine,
  init_models,
  is_sqlite_url,
)
from perfwatch.lib.distributed_tracing import generate_correlation_id, reset_correlation_id
from perfwatch.lib.errors import ProcedureError
from perfwatch.services.metric_store import MetricStore

# Configure logging
logging.basicConfig(
  level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

WARNING_THRESHOLD = 800_000
ALERT_THRESHOLD = 1_000_000

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_CLEANUP_FAILED = 2


class DatabaseUnavailable(Exception):
  """The database could not be reached before cleanup started."""


def check_database_size_and_alert(total_count: int) -> Dict:
  """Log a warning or an alert when the samples table grows too large.

  Thresholds:
  - 800K samples: WARNING log
  - 1M samples: ERROR log with "ALERT:" prefix

  Args:
      total_count: Number of samples remaining after cleanup

  Returns:
      Dictionary with monitoring results
  """
  result = {
    'total_count': total_count,
    'warning_threshold_exceeded': False,
    'error_threshold_exceeded': False,
  }

  if total_count >= WARNING_THRESHOLD:
    logger.warning(
      f'Metrics table approaching limit: {total_count:,} samples '
      f'(80% of 1M threshold). Consider a shorter retention period.'
    )
    result['warning_threshold_exceeded'] = True

  if total_count >= ALERT_THRESHOLD:
    logger.error(
      f'ALERT: Metrics table exceeded 1M threshold: {total_count:,} samples. '
      f'Run cleanup with fewer --days or investigate ingestion volume.'
    )
    result['error_threshold_exceeded'] = True

  return result


async def run_cleanup(settings: Settings, days_to_keep: int) -> int:
  """Run one cleanup pass and return the process exit code.

  Raises:
      DatabaseUnavailable: The connectivity check failed
  """
  engine = create_engine_from_settings(settings)
  try:
    try:
      async with engine.connect() as conn:
        await conn.execute(text('SELECT 1'))
      if is_sqlite_url(settings.database_url):
        await init_models(engine)
    except Exception as e:
      raise DatabaseUnavailable(f'Cannot connect to metrics database: {e}') from e

    store = MetricStore(
      create_session_factory(engine), query_timeout_seconds=settings.query_timeout_seconds
    )

    try:
      deleted = await store.cleanup(days_to_keep)
    except ProcedureError as e:
      logger.error(f'Cleanup job failed: {e}', exc_info=True)
      return EXIT_CLEANUP_FAILED

    logger.info(f'Cleanup job completed successfully: {deleted} samples deleted')

    try:
      total_count = await store.count_samples()
    except ProcedureError as e:
      logger.warning(f'Could not check metrics table size: {e}')
    else:
      monitoring_result = check_database_size_and_alert(total_count)
      logger.info(f'Database monitoring: {monitoring_result["total_count"]:,} samples remaining')

    return EXIT_SUCCESS
  finally:
    await dispose_engine(engine)


class JobArgumentParser(argparse.ArgumentParser):
  """Argument parser whose usage errors exit with ``EXIT_FATAL``.

  argparse exits with 2 by default, which this job reserves for a failed
  cleanup.
  """

  def error(self, message):
    self.print_usage(sys.stderr)
    logger.error(f'Invalid arguments: {message}')
    sys.exit(EXIT_FATAL)


def _positive_days(value: str) -> int:
  try:
    days = int(value)
  except ValueError:
    raise argparse.ArgumentTypeError(f'{value!r} is not a whole number of days')
  if days < 1:
    raise argparse.ArgumentTypeError(f'must be at least 1 day, got {days}')
  return days


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
  parser = JobArgumentParser(description='Delete performance samples past retention.')
  parser.add_argument(
    '--days',
    type=_positive_days,
    default=None,
    help='Keep samples newer than this many days (default: PERFWATCH_RETENTION_DAYS)',
  )
  return parser.parse_args(argv)


def main(argv: Optional[list] = None):
  """Main entry point for the cleanup job."""
  args = parse_args(argv)
  run_id = generate_correlation_id()

  logger.info('=' * 80)
  logger.info(f'Starting metrics retention cleanup job (run {run_id})')
  logger.info('=' * 80)

  try:
    settings = get_settings()
    days_to_keep = args.days if args.days is not None else settings.retention_days
    logger.info(f'Retention period: {days_to_keep} days')

    exit_code = asyncio.run(run_cleanup(settings, days_to_keep))

  except Exception as e:
    logger.error(f'Fatal error in cleanup job (run {run_id}): {e}', exc_info=True)
    exit_code = EXIT_FATAL
  finally:
    reset_correlation_id()

  sys.exit(exit_code)


if __name__ == '__main__':
  main()
