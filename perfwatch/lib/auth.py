"""Authentication utilities for FastAPI endpoints.

The surrounding marketplace authenticates callers and forwards the resulting
identity on trusted headers. These helpers turn those headers into a
``Principal`` and enforce authenticated/admin access on routes.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from perfwatch.lib.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

USER_HEADER = 'X-Forwarded-User'
ROLE_HEADER = 'X-Forwarded-Role'
API_KEY_HEADER = 'X-Api-Key-Id'

DEFAULT_ADMIN_ROLES = frozenset({'admin'})


@dataclass(frozen=True)
class Principal:
  """Caller identity as forwarded by the marketplace."""

  user_id: Optional[str] = None
  role: Optional[str] = None
  api_key_id: Optional[str] = None

  @property
  def is_authenticated(self) -> bool:
    return bool(self.user_id or self.api_key_id)


def _header(request: Request, name: str) -> Optional[str]:
  value = request.headers.get(name)
  if value is None:
    return None
  value = value.strip()
  return value or None


def principal_from_headers(request: Request) -> Optional[Principal]:
  """Build a principal from the forwarded identity headers.

  Returns:
      Principal, or None if neither a user nor an api key was forwarded
  """
  principal = Principal(
    user_id=_header(request, USER_HEADER),
    role=_header(request, ROLE_HEADER),
    api_key_id=_header(request, API_KEY_HEADER),
  )
  return principal if principal.is_authenticated else None


def get_request_principal(request: Request) -> Optional[Principal]:
  """Principal stored by the request-context middleware, else parsed from headers."""
  if hasattr(request.state, 'principal'):
    return request.state.principal
  return principal_from_headers(request)


async def get_current_principal(request: Request) -> Principal:
  """FastAPI dependency that requires an authenticated caller.

  Raises:
      HTTPException: 401 if no identity was forwarded
  """
  principal = get_request_principal(request)

  if principal is None:
    raise HTTPException(
      status_code=401,
      detail={
        'error_code': 'UNAUTHORIZED',
        'message': 'Authentication required.',
        'status_code': 401,
      },
    )

  return principal


async def get_admin_user(request: Request) -> Principal:
  """FastAPI dependency that enforces admin-only access.

  Admin role names come from settings (``PERFWATCH_ADMIN_ROLES``) and are
  compared case-insensitively.

  Raises:
      HTTPException: 401 if no identity was forwarded
      HTTPException: 403 if the caller's role is not an admin role
  """
  principal = await get_current_principal(request)

  settings = getattr(request.app.state, 'settings', None)
  admin_roles = settings.admin_roles if settings is not None else DEFAULT_ADMIN_ROLES

  if not principal.role or principal.role.lower() not in admin_roles:
    logger.warning(
      f'Access denied for non-admin user: {principal.user_id or principal.api_key_id}',
      path=request.url.path,
    )
    raise HTTPException(
      status_code=403,
      detail={
        'error_code': 'FORBIDDEN',
        'message': 'Administrator privileges required to access performance data',
        'status_code': 403,
      },
    )

  logger.debug(f'Admin access granted for user: {principal.user_id}', path=request.url.path)
  return principal
