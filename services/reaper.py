"""Periodic removal of expired records.

The sweep is a backstop. Identity renewal, revocation checks and cache reads
all treat expired records as expired on their own.
"""

import asyncio
import time
import uuid
from typing import Optional

from config import ApplicationConfig
from models import SweepResult
from utils import Clock, create_contextual_logger, log_exception, set_correlation_id, utc_now

from .metrics import sweep_removed_total
from .store import DocumentStore


class Reaper:
    """Deletes expired identities, sessions, revoked tokens and cache entries."""

    def __init__(self, config: ApplicationConfig, store: DocumentStore, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock
        self.interval = config.cleanup_interval_seconds
        self.logger = create_contextual_logger(__name__, service="reaper")
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.last_result: Optional[SweepResult] = None

    async def sweep(self) -> SweepResult:
        """Run one sweep over every collection."""
        started = time.perf_counter()
        now = self.clock()

        result = SweepResult(
            identities_removed=await self.store.delete_expired_identities(now),
            sessions_removed=await self.store.delete_expired_sessions(now),
            revoked_tokens_removed=await self.store.delete_expired_revoked_tokens(now),
            cache_entries_removed=await self.store.delete_expired_cache_entries(now),
        )
        result.duration_seconds = round(time.perf_counter() - started, 4)

        sweep_removed_total.labels(collection="identities").inc(result.identities_removed)
        sweep_removed_total.labels(collection="sessions").inc(result.sessions_removed)
        sweep_removed_total.labels(collection="revoked_tokens").inc(result.revoked_tokens_removed)
        sweep_removed_total.labels(collection="cache_entries").inc(result.cache_entries_removed)

        self.last_result = result
        self.logger.info("Expired records swept", **result.model_dump())
        return result

    def start(self) -> None:
        """Start the periodic sweep loop."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        self.logger.info("Reaper started", interval_seconds=self.interval)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        self.logger.info("Reaper stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            set_correlation_id(str(uuid.uuid4()))
            try:
                await self.sweep()
            except Exception as e:
                # A failed sweep is retried on the next tick.
                log_exception(self.logger, e, "Scheduled sweep failed")
