"""Shared FastAPI dependencies for route handlers."""

from fastapi import HTTPException, Request

from storefront.services.health import HealthAggregator
from storefront.services.metrics import MetricsStore


def require_metrics(request: Request) -> MetricsStore:
    """FastAPI dependency that returns the process metrics store or raises 503."""
    store = getattr(request.app.state, "metrics", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Metrics not available")
    return store


def require_health(request: Request) -> HealthAggregator:
    """FastAPI dependency that returns the health aggregator or raises 503."""
    aggregator = getattr(request.app.state, "health", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Health checks not available")
    return aggregator
