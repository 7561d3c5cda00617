"""Periodic retention of performance samples inside the running app."""

import asyncio
import contextlib
import logging
from typing import Optional

from perfwatch.lib.structured_logger import log_event
from perfwatch.services.metric_store import MetricStore

logger = logging.getLogger(__name__)


class RetentionScheduler:
    """Runs ``store.cleanup`` every ``interval_seconds`` until stopped.

    A failed run is logged and retried on the next interval; the loop only
    ends on ``stop``.
    """

    def __init__(self, store: MetricStore, days_to_keep: int = 30, interval_seconds: float = 3600.0):
        self.store = store
        self.days_to_keep = days_to_keep
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the cleanup loop (no-op when already running)."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name='perfwatch-retention')
            logger.info(
                f'Retention started: keeping {self.days_to_keep} days, '
                f'every {self.interval_seconds}s'
            )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info('Retention stopped')

    async def run_once(self) -> Optional[int]:
        """One cleanup pass; returns the deleted count, or None on failure."""
        try:
            deleted = await self.store.cleanup(self.days_to_keep)
        except Exception as e:
            logger.error(f'Retention cleanup failed: {e}')
            return None

        log_event(
            'retention.cleanup',
            context={'deleted_count': deleted, 'days_to_keep': self.days_to_keep},
        )
        return deleted

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
