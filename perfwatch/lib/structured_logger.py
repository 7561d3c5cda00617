"""JSON logging for perfwatch.

Log lines are single JSON objects carrying the request correlation id, so a
request can be followed from the API handler through the store.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from perfwatch.lib.distributed_tracing import get_correlation_id

# Keyword context copied from a record onto the JSON line when present
CONTEXT_FIELDS = (
  'user_id',
  'api_key_id',
  'duration_ms',
  'endpoint',
  'method',
  'status_code',
  'error_code',
  'path',
)

SENSITIVE_KEYS = ('token', 'password', 'api_key', 'authorization', 'cookie')


def _timestamp() -> str:
  return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def _level_from_env(default: str = 'INFO') -> int:
  return getattr(logging, os.getenv('LOG_LEVEL', default).upper(), logging.INFO)


def _emit(entry: Dict[str, Any]) -> None:
  print(json.dumps(entry, default=str))


class JSONFormatter(logging.Formatter):
  """Renders a log record as one JSON object."""

  def format(self, record: logging.LogRecord) -> str:
    payload = {
      'timestamp': _timestamp(),
      'level': record.levelname,
      'logger': record.name,
      'message': record.getMessage(),
      'module': record.module,
      'function': record.funcName,
      'request_id': get_correlation_id(),
    }
    payload.update(
      (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
    )

    if record.exc_info:
      exc_type, exc_value, _ = record.exc_info
      payload['exception'] = {
        'type': exc_type.__name__ if exc_type else None,
        'message': str(exc_value) if exc_value else None,
      }

    return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
  """Send stdlib module loggers through ``JSONFormatter``.

  Args:
      level: Level name; ``LOG_LEVEL`` from the environment when omitted
  """
  root = logging.getLogger()
  root.setLevel(getattr(logging, level.upper(), logging.INFO) if level else _level_from_env())

  if any(isinstance(handler.formatter, JSONFormatter) for handler in root.handlers):
    return
  handler = logging.StreamHandler()
  handler.setFormatter(JSONFormatter())
  root.addHandler(handler)


class StructuredLogger:
  """Logger whose keyword arguments become JSON context fields.

  Usage:
      logger = StructuredLogger(__name__)
      logger.info('Report generated', endpoint='/api/v1/performance/report', duration_ms=50)
      logger.error('Cleanup failed', exc_info=True)
  """

  def __init__(self, name: str):
    self.logger = logging.getLogger(name)
    self.logger.setLevel(_level_from_env())

    # Own JSON handler, no propagation: each line is written once
    if not any(isinstance(h.formatter, JSONFormatter) for h in self.logger.handlers):
      handler = logging.StreamHandler()
      handler.setFormatter(JSONFormatter())
      self.logger.addHandler(handler)
    self.logger.propagate = False

  def _log(self, level: int, message: str, exc_info: bool, extra: Dict[str, Any]) -> None:
    self.logger.log(level, message, exc_info=exc_info, extra=extra, stacklevel=3)

  def debug(self, message: str, **extra: Any) -> None:
    self._log(logging.DEBUG, message, False, extra)

  def info(self, message: str, **extra: Any) -> None:
    """Log at INFO; ``extra`` holds context such as user_id or duration_ms."""
    self._log(logging.INFO, message, False, extra)

  def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
    self._log(logging.WARNING, message, exc_info, extra)

  def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
    self._log(logging.ERROR, message, exc_info, extra)


def log_request(
  endpoint: str,
  method: str,
  status_code: int,
  duration_ms: float,
  user_id: str | None = None,
) -> None:
  """Write one access-log line for a monitored call.

  Args:
      endpoint: Request path or procedure name
      method: HTTP verb or RPC type
      status_code: Response status (mapped status for failed calls)
      duration_ms: Wall-clock duration in milliseconds
      user_id: Caller, when known
  """
  entry = {
    'timestamp': _timestamp(),
    'level': 'INFO',
    'message': f'{method} {endpoint}',
    'request_id': get_correlation_id(),
    'endpoint': endpoint,
    'method': method,
    'status_code': status_code,
    'duration_ms': round(duration_ms, 3),
  }
  if user_id:
    entry['user_id'] = user_id

  _emit(entry)


def log_event(event: str, level: str = 'INFO', context: Optional[Dict[str, Any]] = None) -> None:
  """Write a named event line; sensitive keys in ``context`` are dropped.

  Example:
      log_event('retention.cleanup', context={'deleted_count': 120, 'days_to_keep': 30})
  """
  entry = {
    'timestamp': _timestamp(),
    'level': level.upper(),
    'event': event,
    'correlation_id': get_correlation_id(),
  }
  entry.update((key, value) for key, value in (context or {}).items() if key not in SENSITIVE_KEYS)

  _emit(entry)
