"""Health check routes."""

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from storefront.contracts.health import HealthReport, HealthStatus, LivenessResponse
from storefront.routes.depends import require_health
from storefront.services.health import HealthAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _apply_status(report: HealthReport, response: Response) -> HealthReport:
    # Degraded still serves traffic; only unhealthy flips the probe.
    if report.status is HealthStatus.UNHEALTHY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return report


@router.get("", response_model=HealthReport)
async def health_check(
    response: Response,
    aggregator: HealthAggregator = Depends(require_health),
) -> HealthReport:
    """Run every registered check and report each result."""
    report = await aggregator.full()
    if report.status is not HealthStatus.HEALTHY:
        logger.warning(
            "Health check reported %s: %s",
            report.status.value,
            ", ".join(f"{c.name}={c.status.value}" for c in report.checks),
        )
    return _apply_status(report, response)


@router.get("/ready", response_model=HealthReport)
async def readiness_check(
    response: Response,
    aggregator: HealthAggregator = Depends(require_health),
) -> HealthReport:
    """Readiness endpoint for load balancers: only checks tagged ``ready``."""
    report = await aggregator.readiness()
    return _apply_status(report, response)


@router.get("/live", response_model=LivenessResponse)
async def liveness_check(request: Request) -> LivenessResponse:
    """Process-alive signal. Always healthy; no checks are run."""
    return LivenessResponse(version=request.app.state.settings.version)
