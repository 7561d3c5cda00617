"""Typed errors shared by the monitoring core and its API.

Every error carries one of the RPC error categories in ``ErrorCode``. The same
category to HTTP status mapping is used by the ingestion middleware (to tag a
failed call's sample) and by the API exception handler (to build responses).
"""

from enum import Enum
from typing import Optional

from starlette.exceptions import HTTPException as StarletteHTTPException


class ErrorCode(str, Enum):
    """RPC error categories."""

    BAD_REQUEST = 'BAD_REQUEST'
    UNAUTHORIZED = 'UNAUTHORIZED'
    FORBIDDEN = 'FORBIDDEN'
    NOT_FOUND = 'NOT_FOUND'
    TOO_MANY_REQUESTS = 'TOO_MANY_REQUESTS'
    INTERNAL_SERVER_ERROR = 'INTERNAL_SERVER_ERROR'


HTTP_STATUS_BY_CODE: dict[str, int] = {
    ErrorCode.UNAUTHORIZED.value: 401,
    ErrorCode.FORBIDDEN.value: 403,
    ErrorCode.NOT_FOUND.value: 404,
    ErrorCode.TOO_MANY_REQUESTS.value: 429,
    ErrorCode.BAD_REQUEST.value: 400,
}

DEFAULT_ERROR_STATUS = 500
SUCCESS_STATUS = 200


class ProcedureError(Exception):
    """Error raised by a monitored procedure or an API handler.

    Args:
        code: Error category
        message: Human-readable message (safe to show to callers)
        cause: Underlying exception, if any
        error_code: Finer-grained machine code (e.g. "DATABASE_ERROR")
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        cause: Optional[BaseException] = None,
        error_code: Optional[str] = None,
    ):
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        self.error_code = error_code or self.code.value
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code.value, DEFAULT_ERROR_STATUS)


class DatabaseError(ProcedureError):
    """A read, aggregate or cleanup against the metric store failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            ErrorCode.INTERNAL_SERVER_ERROR, message, cause=cause, error_code='DATABASE_ERROR'
        )


class ValidationFailure(ProcedureError):
    """Input rejected before reaching the store."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.BAD_REQUEST, message, error_code='VALIDATION_ERROR')


def status_code_for_error(exc: BaseException) -> int:
    """Map a raised error to the HTTP-equivalent status recorded for the call.

    ``UNAUTHORIZED`` 401, ``FORBIDDEN`` 403, ``NOT_FOUND`` 404,
    ``TOO_MANY_REQUESTS`` 429, ``BAD_REQUEST`` 400, anything else 500.
    Starlette/FastAPI ``HTTPException`` keeps its own status code.
    """
    if isinstance(exc, StarletteHTTPException):
        return exc.status_code

    code = getattr(exc, 'code', None)
    if isinstance(code, Enum):
        code = code.value
    if isinstance(code, str):
        return HTTP_STATUS_BY_CODE.get(code, DEFAULT_ERROR_STATUS)

    return DEFAULT_ERROR_STATUS
