"""In-process request metering.

Counters are keyed by string, one entry per key, and every entry owns its
own lock. The store-wide registry lock is only taken the first time a key
is seen, so concurrent ``record_*`` calls on different keys never contend
and calls on the same key are linearizable.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TypeVar

from storefront.contracts.metrics import (
    CacheKeyCounts,
    CacheMetricsSnapshot,
    EndpointMetricSnapshot,
    MetricsSnapshot,
    OperationMetricSnapshot,
    UserActivitySnapshot,
)
from storefront.services.sampler import ProcessSampler

logger = logging.getLogger(__name__)

SLOW_CALL_MS = 1000
SLOW_QUERY_MS = 500
FLUSH_INTERVAL_SECONDS = 300.0

_T = TypeVar("_T")


@dataclass
class LatencyMetric:
    """Count and min/max/total latency for one key."""

    count: int = 0
    total_ms: int = 0
    min_ms: int = 0
    max_ms: int = 0
    last_call_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _add(self, duration_ms: int) -> None:
        # Caller holds self.lock.
        if self.count == 0:
            self.min_ms = duration_ms
            self.max_ms = duration_ms
        else:
            self.min_ms = min(self.min_ms, duration_ms)
            self.max_ms = max(self.max_ms, duration_ms)
        self.count += 1
        self.total_ms += duration_ms
        self.last_call_at = datetime.now(UTC)

    def add(self, duration_ms: int) -> None:
        with self.lock:
            self._add(duration_ms)

    @property
    def avg_ms(self) -> int:
        return self.total_ms // self.count if self.count else 0


@dataclass
class EndpointMetric(LatencyMetric):
    endpoint: str = ""
    method: str = ""
    status_codes: dict[int, int] = field(default_factory=dict)

    def record(self, status_code: int, duration_ms: int) -> None:
        with self.lock:
            self._add(duration_ms)
            self.status_codes[status_code] = self.status_codes.get(status_code, 0) + 1

    def snapshot(self) -> EndpointMetricSnapshot:
        with self.lock:
            return EndpointMetricSnapshot(
                endpoint=self.endpoint,
                method=self.method,
                count=self.count,
                total_ms=self.total_ms,
                min_ms=self.min_ms,
                max_ms=self.max_ms,
                avg_ms=self.avg_ms,
                last_call_at=self.last_call_at,
                status_codes=dict(self.status_codes),
            )


@dataclass
class OperationMetric(LatencyMetric):
    operation: str = ""

    def snapshot(self) -> OperationMetricSnapshot:
        with self.lock:
            return OperationMetricSnapshot(
                operation=self.operation,
                count=self.count,
                total_ms=self.total_ms,
                min_ms=self.min_ms,
                max_ms=self.max_ms,
                avg_ms=self.avg_ms,
                last_call_at=self.last_call_at,
            )


@dataclass
class CacheKeyMetric:
    hits: int = 0
    misses: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def hit(self) -> None:
        with self.lock:
            self.hits += 1

    def miss(self) -> None:
        with self.lock:
            self.misses += 1

    def counts(self) -> CacheKeyCounts:
        with self.lock:
            return CacheKeyCounts(hits=self.hits, misses=self.misses)


@dataclass
class UserActionCount:
    user_id: str
    action: str
    count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self) -> None:
        with self.lock:
            self.count += 1


def cache_hit_rate(hits: int, misses: int) -> float:
    """Hit percentage, 0.0 when there were no lookups."""
    total = hits + misses
    return hits / total * 100 if total > 0 else 0.0


class MetricsStore:
    """Thread-safe counters for API calls, queries, cache lookups and user actions.

    Construct one per process and hand it to the consumers that record into it
    (request middleware, data-access probe, admin routes, flush service).
    """

    def __init__(
        self,
        sampler: ProcessSampler | None = None,
        *,
        slow_call_ms: int = SLOW_CALL_MS,
        slow_query_ms: int = SLOW_QUERY_MS,
    ) -> None:
        self._sampler = sampler or ProcessSampler()
        self._slow_call_ms = slow_call_ms
        self._slow_query_ms = slow_query_ms
        self._registry_lock = threading.Lock()
        self._endpoints: dict[str, EndpointMetric] = {}
        self._operations: dict[str, OperationMetric] = {}
        self._cache: dict[str, CacheKeyMetric] = {}
        self._user_actions: dict[str, UserActionCount] = {}

    def _entry(self, table: dict[str, _T], key: str, factory: Callable[[], _T]) -> _T:
        entry = table.get(key)
        if entry is not None:
            return entry
        with self._registry_lock:
            entry = table.get(key)
            if entry is None:
                entry = factory()
                table[key] = entry
            return entry

    def record_api_call(
        self, endpoint: str, method: str, status_code: int, duration_ms: int
    ) -> None:
        key = f"{method}:{endpoint}"
        metric = self._entry(
            self._endpoints,
            key,
            lambda: EndpointMetric(endpoint=endpoint, method=method),
        )
        metric.record(status_code, duration_ms)

        if duration_ms > self._slow_call_ms:
            logger.warning(
                "Slow API call detected: %s %s took %sms with status %s",
                method,
                endpoint,
                duration_ms,
                status_code,
            )

    def record_database_query(self, operation: str, duration_ms: int) -> None:
        metric = self._entry(
            self._operations,
            operation,
            lambda: OperationMetric(operation=operation),
        )
        metric.add(duration_ms)

        if duration_ms > self._slow_query_ms:
            logger.warning(
                "Slow database query detected: %s took %sms", operation, duration_ms
            )

    @contextmanager
    def time_operation(self, operation: str) -> Iterator[None]:
        """Record the wall time of the wrapped block as a database query."""
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            self.record_database_query(operation, elapsed_ms)

    def record_cache_hit(self, key: str) -> None:
        self._entry(self._cache, key, CacheKeyMetric).hit()

    def record_cache_miss(self, key: str) -> None:
        self._entry(self._cache, key, CacheKeyMetric).miss()

    def record_user_action(self, user_id: str, action: str) -> None:
        key = f"{user_id}:{action}"
        self._entry(
            self._user_actions,
            key,
            lambda: UserActionCount(user_id=user_id, action=action),
        ).increment()

    def get_endpoint(self, endpoint: str, method: str) -> EndpointMetricSnapshot | None:
        metric = self._endpoints.get(f"{method}:{endpoint}")
        return metric.snapshot() if metric else None

    def get_operation(self, operation: str) -> OperationMetricSnapshot | None:
        metric = self._operations.get(operation)
        return metric.snapshot() if metric else None

    def _cache_snapshot(self) -> CacheMetricsSnapshot:
        keys = {key: metric.counts() for key, metric in list(self._cache.items())}
        hits = sum(c.hits for c in keys.values())
        misses = sum(c.misses for c in keys.values())
        return CacheMetricsSnapshot(
            hits=hits,
            misses=misses,
            hit_rate=cache_hit_rate(hits, misses),
            keys=keys,
        )

    def _user_snapshot(self) -> UserActivitySnapshot:
        entries = list(self._user_actions.items())
        actions: dict[str, int] = {}
        users: set[str] = set()
        for key, entry in entries:
            with entry.lock:
                actions[key] = entry.count
            users.add(entry.user_id)
        return UserActivitySnapshot(
            unique_users=len(users),
            total_actions=sum(actions.values()),
            actions=actions,
        )

    def snapshot(self, *, include_system: bool = True) -> MetricsSnapshot:
        """Consistent-enough copy of every counter.

        Each entry is copied under its own lock; increments that land while
        the snapshot is being built may or may not be included.
        """
        return MetricsSnapshot(
            generated_at=datetime.now(UTC),
            endpoints=[m.snapshot() for m in list(self._endpoints.values())],
            operations=[m.snapshot() for m in list(self._operations.values())],
            cache=self._cache_snapshot(),
            users=self._user_snapshot(),
            system=self._sampler.snapshot() if include_system else None,
        )

    def flush_summary(self) -> int:
        """Log a summary of every counter. Returns the number of lines logged.

        Errors in one section are logged and the remaining sections still run.
        """
        sections: list[tuple[str, Callable[[], int]]] = [
            ("API", self._log_endpoints),
            ("database", self._log_operations),
            ("cache", self._log_cache),
            ("user activity", self._log_users),
            ("system", self._log_system),
        ]
        emitted = 0
        for name, section in sections:
            try:
                emitted += section()
            except Exception:
                logger.exception("Error logging %s metrics", name)
        return emitted

    def _log_endpoints(self) -> int:
        lines = 0
        for metric in list(self._endpoints.values()):
            snap = metric.snapshot()
            codes = ", ".join(f"{code}: {n}" for code, n in sorted(snap.status_codes.items()))
            logger.info(
                "API Metrics: %s [%s] - Calls: %s, Avg: %sms, Min: %sms, Max: %sms, Status Codes: %s",
                snap.endpoint,
                snap.method,
                snap.count,
                snap.avg_ms,
                snap.min_ms,
                snap.max_ms,
                codes,
            )
            lines += 1
        return lines

    def _log_operations(self) -> int:
        lines = 0
        for metric in list(self._operations.values()):
            snap = metric.snapshot()
            logger.info(
                "DB Metrics: %s - Queries: %s, Avg: %sms, Min: %sms, Max: %sms",
                snap.operation,
                snap.count,
                snap.avg_ms,
                snap.min_ms,
                snap.max_ms,
            )
            lines += 1
        return lines

    def _log_cache(self) -> int:
        cache = self._cache_snapshot()
        logger.info(
            "Cache Metrics: Total Operations: %s, Hits: %s, Hit Rate: %.2f%%",
            cache.hits + cache.misses,
            cache.hits,
            cache.hit_rate,
        )
        return 1

    def _log_users(self) -> int:
        users = self._user_snapshot()
        logger.info(
            "User Activity Metrics: Unique Users: %s, Total Actions: %s",
            users.unique_users,
            users.total_actions,
        )
        return 1

    def _log_system(self) -> int:
        system = self._sampler.snapshot()
        logger.info(
            "System Metrics: Memory Usage: %sMB, CPU Time: %.0fms, Threads: %s",
            system.memory_mb,
            system.cpu_time_ms,
            system.thread_count,
        )
        return 1


class MetricsFlushService:
    """Periodically logs the metrics summary on a background task."""

    def __init__(
        self,
        store: MetricsStore,
        interval_seconds: float = FLUSH_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._interval_seconds = max(0.01, interval_seconds)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the flush background task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Metrics flush service started (interval=%.0fs)", self._interval_seconds
        )

    async def stop(self) -> None:
        """Stop the flush background task."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Metrics flush service stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.flush()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Metrics flush failed")

    async def flush(self) -> int:
        # Off the event loop so psutil calls and log I/O never stall requests.
        return await asyncio.to_thread(self._store.flush_summary)
