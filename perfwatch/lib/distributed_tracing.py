"""Request correlation ids.

The id lives in a context variable, so every task spawned while serving a
request logs the same id.
"""

import contextvars
from uuid import uuid4

NO_REQUEST_ID = 'no-request-id'

correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
  'request_id', default=NO_REQUEST_ID
)


def get_correlation_id() -> str:
  """Correlation id of the current request, or ``'no-request-id'`` outside one."""
  return correlation_id.get()


def set_correlation_id(request_id: str) -> contextvars.Token:
  """Bind ``request_id`` to the current context.

  Returns:
      Token for ``reset_correlation_id``
  """
  return correlation_id.set(request_id)


def generate_correlation_id() -> str:
  """Bind and return a fresh UUID4 id."""
  request_id = str(uuid4())
  set_correlation_id(request_id)
  return request_id


def reset_correlation_id(token: contextvars.Token | None = None) -> None:
  """Restore the value bound before ``token``; without a token, clear it."""
  if token is None:
    correlation_id.set(NO_REQUEST_ID)
  else:
    correlation_id.reset(token)
