"""Response cache for upstream payloads.

Entries are keyed by endpoint class plus the canonical form of the request
parameters, and expire after a per-class TTL. Reads treat an expired entry as
a miss whether or not a sweep has removed it yet.

The cache never fails a request: lookups that hit a store error are misses and
failed writes are logged and dropped. Concurrent misses on one key each fetch
and each write; the last write wins.
"""

import asyncio
import json
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Set

from config import ApplicationConfig
from models import (
    CacheEntry,
    CacheStats,
    CacheStatus,
    EndpointClass,
    EndpointStats,
    FetchOutcome,
    PopularEntry,
    WarmReport,
    WarmSeed,
)
from utils import Clock, GatewayError, StoreUnavailable, create_contextual_logger, log_exception, utc_now

from .metrics import cache_invalidations_total, cache_lookups_total
from .store import DocumentStore, compile_key_pattern
from .upstream import UpstreamFetcher


class ResponseCache:
    """TTL-classified cache of upstream responses."""

    def __init__(self, config: ApplicationConfig, store: DocumentStore, clock: Clock = utc_now) -> None:
        self.config = config
        self.store = store
        self.clock = clock
        self.logger = create_contextual_logger(__name__, service="response_cache")
        self._warm_tasks: Set[asyncio.Task] = set()

    @staticmethod
    def derive_key(endpoint_class: str, params: Mapping[str, Any]) -> str:
        """Canonical key: class prefix plus sorted, compact JSON of non-null params."""
        canonical = {name: value for name, value in params.items() if value is not None}
        serialized = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
        return f"{endpoint_class}:{serialized}"

    def ttl_for(self, endpoint_class: str) -> int:
        return self.config.ttl_for(endpoint_class)

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` after counting the hit."""
        try:
            entry = await self.store.hit_cache_entry(key, self.clock())
        except StoreUnavailable as e:
            self.logger.warning("Cache read failed, treating as miss", key=key, error=str(e))
            return None

        endpoint_class = key.split(":", 1)[0]
        if entry is None:
            cache_lookups_total.labels(endpoint_class=endpoint_class, status="miss").inc()
            self.logger.debug("Cache miss", key=key)
            return None

        cache_lookups_total.labels(endpoint_class=endpoint_class, status="hit").inc()
        self.logger.debug("Cache hit", key=key, hits=entry.hits)
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = await self.lookup(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int], endpoint_class: str) -> bool:
        """Replace the entry for ``key``, resetting hits. Returns False if the write was dropped."""
        now = self.clock()
        ttl = self.ttl_for(endpoint_class) if ttl is None else ttl
        entry = CacheEntry(
            key=key,
            value=value,
            endpoint_class=endpoint_class,
            expires_at=now + timedelta(seconds=ttl),
            hits=0,
            created_at=now,
            last_accessed_at=now,
        )
        try:
            await self.store.upsert_cache_entry(entry)
        except StoreUnavailable as e:
            self.logger.warning("Cache write failed", key=key, error=str(e))
            return False

        self.logger.debug("Cache stored", key=key, ttl=ttl, endpoint_class=endpoint_class)
        return True

    async def invalidate(self, pattern: str) -> int:
        """Delete entries matching an exact key or a ``*`` glob."""
        removed = await self.store.delete_cache_entries(compile_key_pattern(pattern))
        cache_invalidations_total.labels(scope="pattern").inc(removed)
        self.logger.info("Cache invalidated by pattern", pattern=pattern, removed=removed)
        return removed

    async def invalidate_class(self, endpoint_class: str) -> int:
        removed = await self.store.delete_cache_class(endpoint_class)
        cache_invalidations_total.labels(scope="class").inc(removed)
        self.logger.info("Cache invalidated by endpoint", endpoint_class=endpoint_class, removed=removed)
        return removed

    async def invalidate_all(self) -> int:
        removed = await self.store.delete_all_cache_entries()
        cache_invalidations_total.labels(scope="all").inc(removed)
        self.logger.info("Cache cleared", removed=removed)
        return removed

    async def cleanup(self) -> int:
        """Delete expired entries now."""
        removed = await self.store.delete_expired_cache_entries(self.clock())
        self.logger.info("Expired cache entries removed", removed=removed)
        return removed

    async def fetch_and_store(
        self, endpoint_class: str, params: Mapping[str, Any], fetcher: UpstreamFetcher
    ) -> FetchOutcome:
        """The miss path: fetch upstream and write the payload back."""
        key = self.derive_key(endpoint_class, params)
        result = await fetcher.fetch(endpoint_class, dict(params))
        await self.set(key, result.payload, self.ttl_for(endpoint_class), endpoint_class)
        return FetchOutcome(key=key, status=CacheStatus.MISS, payload=result.payload, upstream_cost=result.cost)

    async def get_or_fetch(
        self, endpoint_class: str, params: Mapping[str, Any], fetcher: UpstreamFetcher
    ) -> FetchOutcome:
        key = self.derive_key(endpoint_class, params)
        entry = await self.lookup(key)
        if entry is not None:
            return FetchOutcome(key=key, status=CacheStatus.HIT, payload=entry.value)
        return await self.fetch_and_store(endpoint_class, params, fetcher)

    def default_seeds(self) -> List[WarmSeed]:
        """Known-popular requests to pre-populate."""
        seeds = [
            WarmSeed(
                endpoint_class=EndpointClass.SEARCH,
                params={"q": query, "max_results": self.config.cache_warm_max_results},
            )
            for query in self.config.cache_warm_search_queries
        ]
        seeds.extend(
            WarmSeed(endpoint_class=EndpointClass.VIDEO, params={"video_id": video_id})
            for video_id in self.config.cache_warm_video_ids
        )
        seeds.extend(
            WarmSeed(endpoint_class=EndpointClass.CHANNEL, params={"channel_id": channel_id})
            for channel_id in self.config.cache_warm_channel_ids
        )
        return seeds

    def _warm_delay(self, endpoint_class: str) -> float:
        if endpoint_class == EndpointClass.SEARCH.value:
            return self.config.cache_warm_delay_seconds
        return self.config.cache_warm_item_delay_seconds

    async def warm(self, seeds: List[WarmSeed], fetcher: UpstreamFetcher) -> WarmReport:
        """Run each seed through the miss path, pacing between items.

        A failing seed is logged and skipped.
        """
        report = WarmReport()
        self.logger.info("Cache warming started", seeds=len(seeds))

        for index, seed in enumerate(seeds):
            report.attempted += 1
            try:
                outcome = await self.fetch_and_store(seed.endpoint_class, seed.params, fetcher)
                report.stored += 1
                self.logger.debug("Cache warmed", key=outcome.key)
            except GatewayError as e:
                key = self.derive_key(seed.endpoint_class, seed.params)
                report.failed += 1
                report.failed_keys.append(key)
                self.logger.warning("Cache warming failed for seed", key=key, error=e.code)
            except Exception as e:
                key = self.derive_key(seed.endpoint_class, seed.params)
                report.failed += 1
                report.failed_keys.append(key)
                log_exception(self.logger, e, "Cache warming failed for seed", key=key)

            if index < len(seeds) - 1:
                await asyncio.sleep(self._warm_delay(seed.endpoint_class))

        self.logger.info(
            "Cache warming completed",
            attempted=report.attempted,
            stored=report.stored,
            failed=report.failed,
        )
        return report

    def start_warming(self, fetcher: UpstreamFetcher, seeds: Optional[List[WarmSeed]] = None) -> asyncio.Task:
        """Schedule warming in the background and return immediately."""
        task = asyncio.create_task(self.warm(seeds if seeds is not None else self.default_seeds(), fetcher))
        self._warm_tasks.add(task)
        task.add_done_callback(self._on_warm_done)
        return task

    def _on_warm_done(self, task: asyncio.Task) -> None:
        self._warm_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log_exception(self.logger, error, "Cache warming task failed")

    @property
    def warming(self) -> bool:
        return bool(self._warm_tasks)

    async def shutdown(self) -> None:
        """Cancel in-flight warming."""
        tasks = list(self._warm_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def stats(self) -> CacheStats:
        now = self.clock()
        entries = await self.store.list_cache_entries()
        active = [entry for entry in entries if not entry.is_expired(now)]

        grouped: Dict[str, List[CacheEntry]] = defaultdict(list)
        for entry in active:
            grouped[entry.endpoint_class].append(entry)

        by_endpoint = {
            endpoint_class: EndpointStats(
                count=len(group),
                total_hits=sum(e.hits for e in group),
                avg_hits=round(sum(e.hits for e in group) / len(group), 2),
            )
            for endpoint_class, group in grouped.items()
        }

        total_hits = sum(entry.hits for entry in entries)
        return CacheStats(
            total_entries=len(entries),
            active_entries=len(active),
            expired_entries=len(entries) - len(active),
            total_hits=total_hits,
            avg_hits_per_entry=round(total_hits / len(entries), 2) if entries else 0.0,
            hit_ratio=round(total_hits / len(active), 2) if active else 0.0,
            by_endpoint=by_endpoint,
        )

    async def popular(self, limit: int = 10) -> List[PopularEntry]:
        """Most-read live entries."""
        now = self.clock()
        entries = [entry for entry in await self.store.list_cache_entries() if not entry.is_expired(now)]
        entries.sort(key=lambda entry: entry.hits, reverse=True)
        return [
            PopularEntry(
                key=entry.key,
                endpoint_class=entry.endpoint_class,
                hits=entry.hits,
                last_accessed_at=entry.last_accessed_at,
                expires_at=entry.expires_at,
            )
            for entry in entries[:limit]
        ]
