"""Response contracts shared by routes and middleware."""

from storefront.contracts.errors import (
    ErrorResponse,
    RateLimitDetails,
    RateLimitErrorResponse,
)
from storefront.contracts.health import (
    HealthCheckEntry,
    HealthReport,
    HealthStatus,
    LivenessResponse,
)
from storefront.contracts.metrics import (
    CacheKeyCounts,
    CacheMetricsSnapshot,
    EndpointMetricSnapshot,
    MetricsSnapshot,
    OperationMetricSnapshot,
    SystemSnapshot,
    UserActivitySnapshot,
)

__all__ = [
    "CacheKeyCounts",
    "CacheMetricsSnapshot",
    "EndpointMetricSnapshot",
    "ErrorResponse",
    "HealthCheckEntry",
    "HealthReport",
    "HealthStatus",
    "LivenessResponse",
    "MetricsSnapshot",
    "OperationMetricSnapshot",
    "RateLimitDetails",
    "RateLimitErrorResponse",
    "SystemSnapshot",
    "UserActivitySnapshot",
]
