"""Named health checks and their aggregation into a single status."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from storefront.contracts.health import HealthCheckEntry, HealthReport, HealthStatus
from storefront.services.sampler import ProcessSampler

if TYPE_CHECKING:
    from storefront.config import Settings
    from storefront.db.session import Database
    from storefront.services.metrics import MetricsStore

logger = logging.getLogger(__name__)

READY_TAG = "ready"
BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class CheckOutcome:
    status: HealthStatus
    description: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def healthy(cls, description: str = "", **data: Any) -> CheckOutcome:
        return cls(HealthStatus.HEALTHY, description, data)

    @classmethod
    def degraded(cls, description: str = "", **data: Any) -> CheckOutcome:
        return cls(HealthStatus.DEGRADED, description, data)

    @classmethod
    def unhealthy(cls, description: str = "", **data: Any) -> CheckOutcome:
        return cls(HealthStatus.UNHEALTHY, description, data)


def classify(value: float, *, degraded_above: float, unhealthy_above: float) -> HealthStatus:
    """Strict ``>`` comparison against both thresholds."""
    if value > unhealthy_above:
        return HealthStatus.UNHEALTHY
    if value > degraded_above:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthCheck(ABC):
    """A named, independently evaluable probe."""

    name: str = ""
    tags: frozenset[str] = frozenset()

    @abstractmethod
    async def check(self) -> CheckOutcome: ...


class BlockingHealthCheck(HealthCheck):
    """Health check whose work is synchronous; evaluated in a worker thread."""

    async def check(self) -> CheckOutcome:
        return await asyncio.to_thread(self.evaluate)

    @abstractmethod
    def evaluate(self) -> CheckOutcome: ...


class MemoryHealthCheck(BlockingHealthCheck):
    name = "memory"

    def __init__(
        self,
        sampler: ProcessSampler,
        *,
        degraded_mb: int = 250,
        unhealthy_mb: int = 500,
    ) -> None:
        self._sampler = sampler
        self._degraded_mb = degraded_mb
        self._unhealthy_mb = unhealthy_mb

    def evaluate(self) -> CheckOutcome:
        used_mb = self._sampler.sample_memory() // BYTES_PER_MB
        status = classify(
            used_mb, degraded_above=self._degraded_mb, unhealthy_above=self._unhealthy_mb
        )
        if status is HealthStatus.UNHEALTHY:
            return CheckOutcome.unhealthy(f"Memory usage is too high: {used_mb}MB", memory_mb=used_mb)
        if status is HealthStatus.DEGRADED:
            return CheckOutcome.degraded(f"Memory usage is high: {used_mb}MB", memory_mb=used_mb)
        return CheckOutcome.healthy(f"Memory usage is normal: {used_mb}MB", memory_mb=used_mb)


class DiskSpaceHealthCheck(BlockingHealthCheck):
    name = "disk-space"

    def __init__(
        self,
        sampler: ProcessSampler,
        path: str = "/",
        *,
        degraded_pct: float = 80.0,
        unhealthy_pct: float = 90.0,
    ) -> None:
        self._sampler = sampler
        self._path = path
        self._degraded_pct = degraded_pct
        self._unhealthy_pct = unhealthy_pct

    def evaluate(self) -> CheckOutcome:
        try:
            free, total = self._sampler.sample_disk(self._path)
        except OSError as exc:
            return CheckOutcome.unhealthy(f"Error checking disk space: {exc}")
        if total <= 0:
            return CheckOutcome.unhealthy(f"Disk at {self._path} reports no capacity")

        used_pct = (total - free) / total * 100
        free_gb = free // (1024 * BYTES_PER_MB)
        data = {"path": self._path, "used_pct": round(used_pct, 1), "free_gb": free_gb}
        status = classify(
            used_pct, degraded_above=self._degraded_pct, unhealthy_above=self._unhealthy_pct
        )
        if status is HealthStatus.UNHEALTHY:
            return CheckOutcome.unhealthy(
                f"Disk space is critically low: {used_pct:.1f}% used, {free_gb}GB free", **data
            )
        if status is HealthStatus.DEGRADED:
            return CheckOutcome.degraded(
                f"Disk space is getting low: {used_pct:.1f}% used, {free_gb}GB free", **data
            )
        return CheckOutcome.healthy(
            f"Disk space is sufficient: {used_pct:.1f}% used, {free_gb}GB free", **data
        )


class CpuHealthCheck(BlockingHealthCheck):
    name = "cpu"

    def __init__(
        self,
        sampler: ProcessSampler,
        *,
        degraded_pct: float = 60.0,
        unhealthy_pct: float = 80.0,
    ) -> None:
        self._sampler = sampler
        self._degraded_pct = degraded_pct
        self._unhealthy_pct = unhealthy_pct

    def evaluate(self) -> CheckOutcome:
        usage = self._sampler.sample_cpu()
        data = {"cpu_pct": round(usage, 1)}
        status = classify(
            usage, degraded_above=self._degraded_pct, unhealthy_above=self._unhealthy_pct
        )
        if status is HealthStatus.UNHEALTHY:
            return CheckOutcome.unhealthy(f"CPU usage is too high: {usage:.1f}%", **data)
        if status is HealthStatus.DEGRADED:
            return CheckOutcome.degraded(f"CPU usage is high: {usage:.1f}%", **data)
        return CheckOutcome.healthy(f"CPU usage is normal: {usage:.1f}%", **data)


class LogFileHealthCheck(BlockingHealthCheck):
    """Degraded when the log directory has no recently written file."""

    name = "logging"

    def __init__(
        self,
        log_dir: str | Path = "logs",
        *,
        pattern: str = "*.log",
        max_age: timedelta = timedelta(minutes=30),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._log_dir = Path(log_dir)
        self._pattern = pattern
        self._max_age = max_age
        self._clock = clock

    def evaluate(self) -> CheckOutcome:
        try:
            if not self._log_dir.is_dir():
                return CheckOutcome.degraded("Log directory does not exist")

            files = [p for p in self._log_dir.glob(self._pattern) if p.is_file()]
            if not files:
                return CheckOutcome.degraded("No log files found")

            stats = [(p, p.stat()) for p in files]
            newest, newest_stat = max(stats, key=lambda item: item[1].st_mtime)
            age_seconds = self._clock() - newest_stat.st_mtime
            if age_seconds > self._max_age.total_seconds():
                return CheckOutcome.degraded(
                    f"No recent logs. Last log: {age_seconds / 60:.0f} minutes ago",
                    file=newest.name,
                )
            return CheckOutcome.healthy(
                f"Logging is active. Recent log: {newest.name} ({newest_stat.st_size // 1024}KB)",
                file=newest.name,
            )
        except OSError as exc:
            return CheckOutcome.unhealthy(f"Error checking log files: {exc}")


class DatabaseHealthCheck(HealthCheck):
    """Readiness probe: the data-access layer answers ``SELECT 1``."""

    name = "database"
    tags = frozenset({READY_TAG})

    def __init__(
        self,
        database: Callable[[], Database],
        metrics: MetricsStore | None = None,
    ) -> None:
        self._database = database
        self._metrics = metrics

    async def check(self) -> CheckOutcome:
        db = self._database()
        async with db.session() as session:
            if self._metrics is None:
                await session.execute(text("SELECT 1"))
            else:
                with self._metrics.time_operation("health.database"):
                    await session.execute(text("SELECT 1"))
        return CheckOutcome.healthy("Database connection is available")


class HealthAggregator:
    """Runs registered checks and reduces them to the worst status.

    A check that raises is reported as unhealthy with the exception
    message; nothing raised by a check escapes ``run``.
    """

    def __init__(self, checks: Iterable[HealthCheck] = (), *, version: str = "") -> None:
        self._checks: dict[str, HealthCheck] = {}
        self._version = version
        for check in checks:
            self.register(check)

    def register(self, check: HealthCheck) -> None:
        if not check.name:
            raise ValueError("Health checks must have a name")
        if check.name in self._checks:
            raise ValueError(f"Health check {check.name!r} is already registered")
        self._checks[check.name] = check

    @property
    def names(self) -> list[str]:
        return list(self._checks)

    async def _run_one(self, check: HealthCheck) -> HealthCheckEntry:
        started = time.perf_counter()
        try:
            outcome = await check.check()
        except Exception as exc:
            logger.warning("Health check %s failed: %s", check.name, exc)
            outcome = CheckOutcome.unhealthy(str(exc) or type(exc).__name__)
        return HealthCheckEntry(
            name=check.name,
            status=outcome.status,
            description=outcome.description,
            timestamp=datetime.now(UTC),
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
            tags=sorted(check.tags),
            data=outcome.data,
        )

    async def run(self, predicate: Callable[[HealthCheck], bool] | None = None) -> HealthReport:
        started = time.perf_counter()
        selected = [c for c in self._checks.values() if predicate is None or predicate(c)]
        entries = list(await asyncio.gather(*(self._run_one(c) for c in selected)))
        return HealthReport(
            status=HealthStatus.worst([e.status for e in entries]),
            version=self._version,
            total_duration_ms=round((time.perf_counter() - started) * 1000, 3),
            checks=entries,
        )

    async def full(self) -> HealthReport:
        return await self.run()

    async def readiness(self) -> HealthReport:
        return await self.run(lambda check: READY_TAG in check.tags)


def build_health_aggregator(
    settings: Settings,
    *,
    sampler: ProcessSampler,
    database: Callable[[], Database],
    metrics: MetricsStore | None = None,
) -> HealthAggregator:
    """Register the standard checks with thresholds from settings."""
    return HealthAggregator(
        [
            DatabaseHealthCheck(database, metrics),
            MemoryHealthCheck(
                sampler,
                degraded_mb=settings.health_memory_degraded_mb,
                unhealthy_mb=settings.health_memory_unhealthy_mb,
            ),
            DiskSpaceHealthCheck(
                sampler,
                settings.health_disk_path,
                degraded_pct=settings.health_disk_degraded_pct,
                unhealthy_pct=settings.health_disk_unhealthy_pct,
            ),
            CpuHealthCheck(
                sampler,
                degraded_pct=settings.health_cpu_degraded_pct,
                unhealthy_pct=settings.health_cpu_unhealthy_pct,
            ),
            LogFileHealthCheck(
                settings.log_dir,
                pattern=settings.log_file_pattern,
                max_age=timedelta(minutes=settings.log_max_age_minutes),
            ),
        ],
        version=settings.version,
    )
