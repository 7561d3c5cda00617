"""Metric store: persistence and aggregate reads for performance samples.

Writes are fire-and-forget: ``record`` never raises, so instrumentation can
never fail the call it measures. Every read and cleanup is bounded by the
query timeout and surfaces failures as ``DatabaseError``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfwatch.lib.database import session_scope
from perfwatch.lib.errors import DatabaseError, ValidationFailure
from perfwatch.lib.metrics import record_cleanup, record_sample_write_failure
from perfwatch.lib.timeutil import ensure_utc, utcnow
from perfwatch.models.performance_report import EndpointActivity, EndpointLatency
from perfwatch.models.performance_sample import PerformanceSample, PerformanceSampleCreate

logger = logging.getLogger(__name__)

DEFAULT_ROW_LIMIT = 1000
DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0
DEFAULT_SLOW_REQUEST_MS = 1000.0


@dataclass
class WindowSummary:
    """Aggregates of all samples in a time window."""

    count: int = 0
    error_count: int = 0
    slow_count: int = 0
    average_response_time: float = 0.0
    average_memory_bytes: float = 0.0
    total_queries: int = 0
    slow_queries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    @property
    def error_rate(self) -> float:
        """Errors as a percentage of all samples (0 for an empty window)."""
        if self.count == 0:
            return 0.0
        return self.error_count * 100 / self.count

    @property
    def average_queries(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_queries / self.count


class MetricStore:
    """Append-only store of performance samples.

    Args:
        session_factory: Async session factory bound to the metrics database
        query_timeout_seconds: Upper bound for any single read or cleanup
        row_limit: Maximum rows returned by ``query``
        clock: Source of "now" for retention cutoffs
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        row_limit: int = DEFAULT_ROW_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.query_timeout_seconds = query_timeout_seconds
        self.row_limit = row_limit
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record(self, sample: Union[PerformanceSampleCreate, Mapping[str, Any]]) -> None:
        """Validate and persist one sample. Failures are logged and dropped.

        Args:
            sample: Validated sample model, or a mapping of its fields
        """
        try:
            if not isinstance(sample, PerformanceSampleCreate):
                sample = PerformanceSampleCreate.model_validate(sample)
        except ValidationError as e:
            logger.error(f'Rejected invalid performance sample: {e.error_count()} validation error(s)')
            record_sample_write_failure('validation')
            return

        try:
            async with asyncio.timeout(self.query_timeout_seconds):
                async with session_scope(self._session_factory) as session:
                    session.add(sample.to_orm())
            logger.debug(
                f'Recorded performance sample: {sample.endpoint} - '
                f'{sample.response_time_ms}ms (status: {sample.status_code})'
            )
        except Exception as e:
            logger.error(f'Failed to record performance sample for {sample.endpoint}: {e!r}')
            record_sample_write_failure('database')

    async def cleanup(self, days_to_keep: int) -> int:
        """Delete samples older than ``days_to_keep`` days.

        Returns:
            Number of samples deleted (0 when nothing is old enough)

        Raises:
            ValidationFailure: days_to_keep is below 1
            DatabaseError: The delete failed or timed out
        """
        if days_to_keep < 1:
            raise ValidationFailure('days_to_keep must be at least 1')

        cutoff = ensure_utc(self._clock()) - timedelta(days=days_to_keep)
        stmt = (
            delete(PerformanceSample)
            .where(PerformanceSample.timestamp < cutoff)
            .execution_options(synchronize_session=False)
        )

        try:
            async with asyncio.timeout(self.query_timeout_seconds):
                async with session_scope(self._session_factory) as session:
                    result = await session.execute(stmt)
                    deleted = result.rowcount or 0
        except TimeoutError as e:
            raise DatabaseError('Failed to clean up old metrics: timed out', cause=e) from e
        except Exception as e:
            raise DatabaseError('Failed to clean up old metrics', cause=e) from e

        record_cleanup(deleted)
        logger.info(f'Cleaned up {deleted} performance samples older than {cutoff.isoformat()}')
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _read(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session for one bounded read; any failure becomes ``DatabaseError``."""
        try:
            async with asyncio.timeout(self.query_timeout_seconds):
                async with self._session_factory() as session:
                    yield session
        except DatabaseError:
            raise
        except TimeoutError as e:
            logger.error(f'Timed out after {self.query_timeout_seconds}s: {operation}')
            raise DatabaseError(f'Failed to {operation}: timed out', cause=e) from e
        except Exception as e:
            logger.error(f'Failed to {operation}: {e!r}')
            raise DatabaseError(f'Failed to {operation}', cause=e) from e

    @staticmethod
    def _window(start_time: datetime, end_time: Optional[datetime] = None) -> list:
        conditions = [PerformanceSample.timestamp >= ensure_utc(start_time)]
        if end_time is not None:
            conditions.append(PerformanceSample.timestamp <= ensure_utc(end_time))
        return conditions

    async def query(
        self,
        start_time: datetime,
        end_time: datetime,
        endpoint: Optional[str] = None,
    ) -> List[PerformanceSample]:
        """Samples in ``[start_time, end_time]``, newest first, capped at ``row_limit``."""
        stmt = select(PerformanceSample).where(*self._window(start_time, end_time))
        if endpoint:
            stmt = stmt.where(PerformanceSample.endpoint == endpoint)
        stmt = stmt.order_by(PerformanceSample.timestamp.desc()).limit(self.row_limit)

        async with self._read('fetch performance metrics') as session:
            return list(await session.scalars(stmt))

    async def summarize(
        self,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        slow_request_ms: float = DEFAULT_SLOW_REQUEST_MS,
    ) -> WindowSummary:
        """Count, error/slow counts, means and sums over a window."""
        sample = PerformanceSample
        stmt = select(
            func.count(sample.id),
            func.coalesce(func.sum(case((sample.status_code >= 400, 1), else_=0)), 0),
            func.coalesce(func.sum(case((sample.response_time_ms > slow_request_ms, 1), else_=0)), 0),
            func.avg(sample.response_time_ms),
            func.avg(sample.memory_usage_bytes),
            func.coalesce(func.sum(sample.database_query_count), 0),
            func.coalesce(func.sum(sample.slow_query_count), 0),
            func.coalesce(func.sum(sample.cache_hits), 0),
            func.coalesce(func.sum(sample.cache_misses), 0),
        ).where(*self._window(start_time, end_time))

        async with self._read('summarize performance metrics') as session:
            row = (await session.execute(stmt)).one()

        count, errors, slow, avg_time, avg_memory, queries, slow_queries, hits, misses = row
        return WindowSummary(
            count=int(count or 0),
            error_count=int(errors or 0),
            slow_count=int(slow or 0),
            average_response_time=float(avg_time or 0.0),
            average_memory_bytes=float(avg_memory or 0.0),
            total_queries=int(queries or 0),
            slow_queries=int(slow_queries or 0),
            cache_hits=int(hits or 0),
            cache_misses=int(misses or 0),
        )

    async def response_times(self, start_time: datetime, end_time: datetime) -> List[float]:
        """All response times in the window, ascending."""
        stmt = (
            select(PerformanceSample.response_time_ms)
            .where(*self._window(start_time, end_time))
            .order_by(PerformanceSample.response_time_ms.asc())
        )
        async with self._read('fetch response times') as session:
            return [float(value) for value in await session.scalars(stmt)]

    async def slowest_endpoints(
        self, start_time: datetime, end_time: datetime, limit: int = 10
    ) -> List[EndpointLatency]:
        """Endpoints by mean response time, slowest first."""
        average = func.avg(PerformanceSample.response_time_ms).label('average_response_time')
        request_count = func.count(PerformanceSample.id).label('request_count')
        stmt = (
            select(PerformanceSample.endpoint, average, request_count)
            .where(*self._window(start_time, end_time))
            .group_by(PerformanceSample.endpoint)
            .order_by(average.desc(), PerformanceSample.endpoint)
            .limit(limit)
        )
        async with self._read('rank slow endpoints') as session:
            rows = (await session.execute(stmt)).all()

        return [
            EndpointLatency(
                endpoint=row.endpoint,
                average_response_time=float(row.average_response_time),
                request_count=int(row.request_count),
            )
            for row in rows
        ]

    async def error_endpoints(
        self, start_time: datetime, end_time: datetime, limit: int = 10
    ) -> List[Tuple[str, int]]:
        """(endpoint, error sample count) pairs, most errors first."""
        error_count = func.count(PerformanceSample.id).label('error_count')
        stmt = (
            select(PerformanceSample.endpoint, error_count)
            .where(*self._window(start_time, end_time), PerformanceSample.status_code >= 400)
            .group_by(PerformanceSample.endpoint)
            .order_by(error_count.desc(), PerformanceSample.endpoint)
            .limit(limit)
        )
        async with self._read('rank error endpoints') as session:
            rows = (await session.execute(stmt)).all()

        return [(row.endpoint, int(row.error_count)) for row in rows]

    async def count_active_users(
        self, start_time: datetime, end_time: Optional[datetime] = None
    ) -> int:
        """Distinct non-null user ids in the window."""
        stmt = select(func.count(func.distinct(PerformanceSample.user_id))).where(
            *self._window(start_time, end_time), PerformanceSample.user_id.is_not(None)
        )
        async with self._read('count active users') as session:
            return int(await session.scalar(stmt) or 0)

    async def endpoint_activity(
        self, start_time: datetime, end_time: Optional[datetime] = None
    ) -> List[EndpointActivity]:
        """Per-endpoint mean latency, volume and last-seen time, busiest first."""
        average = func.avg(PerformanceSample.response_time_ms).label('average_response_time')
        request_count = func.count(PerformanceSample.id).label('request_count')
        last_seen = func.max(PerformanceSample.timestamp).label('last_seen')
        stmt = (
            select(PerformanceSample.endpoint, average, request_count, last_seen)
            .where(*self._window(start_time, end_time))
            .group_by(PerformanceSample.endpoint)
            .order_by(request_count.desc(), PerformanceSample.endpoint)
            .limit(self.row_limit)
        )
        async with self._read('fetch endpoint activity') as session:
            rows = (await session.execute(stmt)).all()

        return [
            EndpointActivity(
                endpoint=row.endpoint,
                average_response_time=float(row.average_response_time),
                request_count=int(row.request_count),
                last_seen=ensure_utc(row.last_seen),
            )
            for row in rows
        ]

    async def recent_samples_by_endpoint(
        self,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        per_endpoint: int = 100,
        endpoint: Optional[str] = None,
    ) -> Dict[str, List[Tuple[datetime, float]]]:
        """Latest ``per_endpoint`` (timestamp, response time) pairs of each endpoint.

        Each endpoint's samples are returned oldest first.
        """
        position = func.row_number().over(
            partition_by=PerformanceSample.endpoint,
            order_by=(PerformanceSample.timestamp.desc(), PerformanceSample.id.desc()),
        ).label('position')
        ranked = select(
            PerformanceSample.endpoint,
            PerformanceSample.timestamp,
            PerformanceSample.response_time_ms,
            position,
        ).where(*self._window(start_time, end_time))
        if endpoint:
            ranked = ranked.where(PerformanceSample.endpoint == endpoint)
        ranked = ranked.subquery()

        stmt = (
            select(ranked.c.endpoint, ranked.c.timestamp, ranked.c.response_time_ms)
            .where(ranked.c.position <= per_endpoint)
            .order_by(ranked.c.endpoint, ranked.c.position.desc())
        )
        async with self._read('fetch recent samples by endpoint') as session:
            rows = (await session.execute(stmt)).all()

        samples: Dict[str, List[Tuple[datetime, float]]] = {}
        for row in rows:
            samples.setdefault(row.endpoint, []).append(
                (ensure_utc(row.timestamp), float(row.response_time_ms))
            )
        return samples

    async def count_samples(self) -> int:
        """Total number of stored samples."""
        async with self._read('count performance samples') as session:
            return int(await session.scalar(select(func.count(PerformanceSample.id))) or 0)
