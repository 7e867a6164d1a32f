"""Metering, health and rate limiting services."""

from storefront.services.health import (
    CheckOutcome,
    CpuHealthCheck,
    DatabaseHealthCheck,
    DiskSpaceHealthCheck,
    HealthAggregator,
    HealthCheck,
    LogFileHealthCheck,
    MemoryHealthCheck,
    build_health_aggregator,
)
from storefront.services.metrics import MetricsFlushService, MetricsStore
from storefront.services.rate_limit import (
    FixedWindowRateLimiter,
    RateLimit,
    RouteClass,
    classify_route,
    parse_rate_limit,
)
from storefront.services.sampler import ProcessSampler

__all__ = [
    "CheckOutcome",
    "CpuHealthCheck",
    "DatabaseHealthCheck",
    "DiskSpaceHealthCheck",
    "FixedWindowRateLimiter",
    "HealthAggregator",
    "HealthCheck",
    "LogFileHealthCheck",
    "MemoryHealthCheck",
    "MetricsFlushService",
    "MetricsStore",
    "ProcessSampler",
    "RateLimit",
    "RouteClass",
    "build_health_aggregator",
    "classify_route",
    "parse_rate_limit",
]
