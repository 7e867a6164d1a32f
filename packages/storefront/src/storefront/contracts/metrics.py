"""In-process metrics contract payloads."""

from datetime import datetime

from pydantic import BaseModel, Field


class SystemSnapshot(BaseModel):
    """Point-in-time process resource usage."""

    memory_bytes: int
    cpu_time_ms: float
    thread_count: int
    uptime_seconds: float = 0.0

    @property
    def memory_mb(self) -> int:
        return self.memory_bytes // 1024 // 1024


class EndpointMetricSnapshot(BaseModel):
    """Latency and status-code counters for one ``METHOD:endpoint`` key."""

    endpoint: str
    method: str
    count: int
    total_ms: int
    min_ms: int
    max_ms: int
    avg_ms: int
    last_call_at: datetime | None = None
    status_codes: dict[int, int] = Field(default_factory=dict)


class OperationMetricSnapshot(BaseModel):
    """Latency counters for one data-access operation."""

    operation: str
    count: int
    total_ms: int
    min_ms: int
    max_ms: int
    avg_ms: int
    last_call_at: datetime | None = None


class CacheKeyCounts(BaseModel):
    hits: int = 0
    misses: int = 0


class CacheMetricsSnapshot(BaseModel):
    """Cache lookup counters, aggregated and per key."""

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    keys: dict[str, CacheKeyCounts] = Field(default_factory=dict)


class UserActivitySnapshot(BaseModel):
    unique_users: int = 0
    total_actions: int = 0
    actions: dict[str, int] = Field(default_factory=dict)


class MetricsSnapshot(BaseModel):
    """Full view of the metrics store, served to administrators."""

    generated_at: datetime
    endpoints: list[EndpointMetricSnapshot] = Field(default_factory=list)
    operations: list[OperationMetricSnapshot] = Field(default_factory=list)
    cache: CacheMetricsSnapshot = Field(default_factory=CacheMetricsSnapshot)
    users: UserActivitySnapshot = Field(default_factory=UserActivitySnapshot)
    system: SystemSnapshot | None = None


__all__ = [
    "CacheKeyCounts",
    "CacheMetricsSnapshot",
    "EndpointMetricSnapshot",
    "MetricsSnapshot",
    "OperationMetricSnapshot",
    "SystemSnapshot",
    "UserActivitySnapshot",
]
