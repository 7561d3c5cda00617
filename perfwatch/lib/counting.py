"""Per-call instrumentation for monitored procedures.

A ``CallContext`` is created for every monitored call. The counting wrappers
hold a reference to that context and increment its counters as the call uses
the database or the cache, so counts never leak between calls.
"""

import functools
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from perfwatch.lib.errors import SUCCESS_STATUS, status_code_for_error
from perfwatch.lib.metrics import record_request_duration
from perfwatch.lib.system_resources import current_process_sample
from perfwatch.models.performance_sample import PerformanceSampleCreate

logger = logging.getLogger(__name__)

T = TypeVar('T')

ENDPOINT_MAX_LENGTH = 500
METHOD_MAX_LENGTH = 20
DEFAULT_SLOW_QUERY_MS = 1000.0


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class CallContext:
    """Identity, start time and resource counters of one monitored call."""

    endpoint: str
    method: str
    user_id: Optional[str] = None
    api_key_id: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)
    database_queries: int = 0
    slow_queries: int = 0
    slow_query_ms: float = DEFAULT_SLOW_QUERY_MS
    cache_hits: int = 0
    cache_misses: int = 0

    def elapsed_ms(self) -> float:
        return max(0.0, (time.perf_counter() - self.started_at) * 1000)

    def to_sample(self, status_code: int, response_time_ms: float) -> PerformanceSampleCreate:
        """Build the sample; over-long names are cut to the column widths."""
        memory_bytes, cpu_seconds = current_process_sample()
        return PerformanceSampleCreate(
            endpoint=self.endpoint[:ENDPOINT_MAX_LENGTH],
            method=self.method[:METHOD_MAX_LENGTH],
            response_time_ms=response_time_ms,
            status_code=status_code,
            user_id=self.user_id,
            api_key_id=self.api_key_id,
            memory_usage_bytes=memory_bytes,
            cpu_usage_seconds=cpu_seconds,
            database_query_count=self.database_queries,
            slow_query_count=self.slow_queries,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
        )


class CountingQueryClient:
    """Query client that counts and times every statement it forwards.

    Wraps any client with the ``execute``/``scalar``/``scalars`` surface of
    an ``AsyncSession`` (plus ``query_raw``/``execute_raw`` where the client
    has them). Attributes outside that surface pass through uncounted.
    Statements running longer than ``context.slow_query_ms`` are counted as
    slow and logged with a shortened statement text.
    """

    def __init__(self, client: Any, context: CallContext):
        self._client = client
        self._context = context

    async def _forward(self, name: str, *args, **kwargs):
        self._context.database_queries += 1
        started = time.perf_counter()
        try:
            return await _resolve(getattr(self._client, name)(*args, **kwargs))
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            if duration_ms > self._context.slow_query_ms:
                self._context.slow_queries += 1
                statement = str(args[0]) if args else name
                logger.warning(
                    f'Slow query ({duration_ms:.0f}ms) during {self._context.method} '
                    f'{self._context.endpoint}: {statement[:100]}'
                )

    async def execute(self, *args, **kwargs):
        return await self._forward('execute', *args, **kwargs)

    async def scalar(self, *args, **kwargs):
        return await self._forward('scalar', *args, **kwargs)

    async def scalars(self, *args, **kwargs):
        return await self._forward('scalars', *args, **kwargs)

    async def query_raw(self, *args, **kwargs):
        return await self._forward('query_raw', *args, **kwargs)

    async def execute_raw(self, *args, **kwargs):
        return await self._forward('execute_raw', *args, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)


class CountingCache:
    """Cache wrapper; a ``get`` returning anything but ``None`` is a hit."""

    def __init__(self, cache: Any, context: CallContext):
        self._cache = cache
        self._context = context

    async def get(self, key, *args, **kwargs):
        result = await _resolve(self._cache.get(key, *args, **kwargs))
        if result is not None:
            self._context.cache_hits += 1
        else:
            self._context.cache_misses += 1
        return result

    async def set(self, key, value, *args, **kwargs):
        return await _resolve(self._cache.set(key, value, *args, **kwargs))

    async def delete(self, key, *args, **kwargs):
        return await _resolve(self._cache.delete(key, *args, **kwargs))

    def __getattr__(self, name: str):
        return getattr(self._cache, name)


async def record_call(store, context: CallContext, status_code: int, response_time_ms: float) -> None:
    """Persist one sample for a finished call. Never raises."""
    try:
        record_request_duration(context.endpoint, context.method, status_code, response_time_ms / 1000)
        await store.record(context.to_sample(status_code, response_time_ms))
    except Exception as e:
        logger.error(
            f'Failed to record performance sample for {context.method} {context.endpoint}: {e}'
        )


async def monitor_call(store, context: CallContext, call: Callable[[], Awaitable[T]]) -> T:
    """Run ``call`` and record exactly one sample for it.

    Success is recorded as 200; a raised error is recorded with its mapped
    status and then re-raised unchanged.
    """
    try:
        result = await call()
    except Exception as exc:
        await record_call(store, context, status_code_for_error(exc), context.elapsed_ms())
        raise

    await record_call(store, context, SUCCESS_STATUS, context.elapsed_ms())
    return result


def monitored(endpoint: str, method: str = 'query'):
    """Decorator form of ``monitor_call`` for async procedures.

    The store is taken from the ``store`` keyword argument and the identity
    from ``user_id``/``api_key_id``. A procedure that declares a
    ``call_context`` parameter receives the live context, so it can wrap its
    clients with ``CountingQueryClient``/``CountingCache``.

    Usage:
        @monitored('domains.search', method='query')
        async def search(query, *, store, user_id=None, call_context=None):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        accepts_context = 'call_context' in inspect.signature(func).parameters

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            context = CallContext(
                endpoint=endpoint,
                method=method,
                user_id=kwargs.get('user_id'),
                api_key_id=kwargs.get('api_key_id'),
            )
            if accepts_context:
                kwargs['call_context'] = context

            store = kwargs.get('store')
            if store is None:
                logger.debug(f'No metric store passed to {endpoint}; call not monitored')
                return await func(*args, **kwargs)

            return await monitor_call(store, context, lambda: func(*args, **kwargs))

        return wrapper

    return decorator
