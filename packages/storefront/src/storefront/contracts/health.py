"""Health probe contract payloads."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

_SEVERITY = {"healthy": 0, "degraded": 1, "unhealthy": 2}


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self.value]

    @classmethod
    def worst(cls, statuses: "list[HealthStatus]") -> "HealthStatus":
        """Reduce statuses to the most severe one; an empty list is healthy."""
        return max(statuses, key=lambda s: s.severity, default=cls.HEALTHY)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HealthCheckEntry(BaseModel):
    """Result of a single named health check."""

    name: str
    status: HealthStatus
    description: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    duration_ms: float = 0.0
    tags: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)


class HealthReport(BaseModel):
    """Aggregated health across the evaluated checks."""

    status: HealthStatus = HealthStatus.HEALTHY
    version: str
    timestamp: datetime = Field(default_factory=_utcnow)
    total_duration_ms: float = 0.0
    checks: list[HealthCheckEntry] = Field(default_factory=list)


class LivenessResponse(BaseModel):
    """Process-alive signal. No checks are evaluated."""

    status: HealthStatus = HealthStatus.HEALTHY
    version: str
    timestamp: datetime = Field(default_factory=_utcnow)


__all__ = [
    "HealthCheckEntry",
    "HealthReport",
    "HealthStatus",
    "LivenessResponse",
]
