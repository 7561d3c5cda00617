"""
FastAPI middleware for automatic performance sample collection.

Every monitored request gets a fresh ``CallContext``; handlers reach it (and
the counting wrappers built on it) through ``request.state``. One sample is
recorded per request, with the response status or, when the handler raised,
the status mapped from the error. Recording failures never affect the
response.
"""

import logging
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from perfwatch.lib.auth import get_request_principal
from perfwatch.lib.counting import CallContext, CountingCache, CountingQueryClient, record_call
from perfwatch.lib.errors import status_code_for_error
from perfwatch.lib.structured_logger import log_request

logger = logging.getLogger(__name__)

EXCLUDED_PATHS = frozenset({
    '/health',
    '/ready',
    '/ping',
    '/metrics',
    '/api/health',
    '/api/metrics',
})
EXCLUDED_PREFIXES = ('/internal/',)

# Endpoint recorded for requests no route matched (404s, probes, scanners)
UNMATCHED_ENDPOINT = '<unmatched>'


def is_excluded_path(path: str) -> bool:
    return path in EXCLUDED_PATHS or any(path.startswith(prefix) for prefix in EXCLUDED_PREFIXES)


def endpoint_for(request: Request) -> str:
    """Route template of the matched route, e.g. ``/api/domains/{name}``.

    The router stores the matched route in the request scope while routing,
    so this is only meaningful once the request has been handled.
    """
    route = request.scope.get('route')
    path = getattr(route, 'path', None)
    return path if path else UNMATCHED_ENDPOINT


def counting_client(request: Request, client: Any) -> Any:
    """Wrap a query client so its statements count toward this request.

    Unmonitored requests get the client back unchanged.
    """
    context = getattr(request.state, 'call_context', None)
    if context is None:
        return client
    context.endpoint = endpoint_for(request)
    return CountingQueryClient(client, context)


def counting_cache(request: Request, cache: Any) -> Any:
    """Wrap a cache so its lookups count toward this request."""
    context = getattr(request.state, 'call_context', None)
    if context is None:
        return cache
    return CountingCache(cache, context)


class MetricsCollectionMiddleware(BaseHTTPMiddleware):
    """Records one performance sample per monitored request.

    The metric store is read from ``app.state.store``; until the application
    lifespan has created it, requests pass through unmonitored.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        store = getattr(request.app.state, 'store', None)

        if is_excluded_path(path) or store is None:
            return await call_next(request)

        principal = get_request_principal(request)
        settings = getattr(request.app.state, 'settings', None)
        context = CallContext(
            endpoint=UNMATCHED_ENDPOINT,
            method=request.method,
            user_id=principal.user_id if principal else None,
            api_key_id=principal.api_key_id if principal else None,
        )
        if settings is not None:
            context.slow_query_ms = settings.slow_query_ms
        request.state.call_context = context

        try:
            response = await call_next(request)
        except Exception as exc:
            context.endpoint = endpoint_for(request)
            status_code = status_code_for_error(exc)
            await self._record(store, context, status_code)
            raise

        context.endpoint = endpoint_for(request)
        await self._record(store, context, response.status_code)
        return response

    @staticmethod
    async def _record(store, context: CallContext, status_code: int) -> None:
        duration_ms = context.elapsed_ms()
        log_request(context.endpoint, context.method, status_code, duration_ms, context.user_id)
        await record_call(store, context, status_code, duration_ms)
