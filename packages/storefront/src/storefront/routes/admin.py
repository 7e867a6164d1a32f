"""Admin routes for operational metrics."""

import logging

from fastapi import APIRouter, Depends

from storefront.auth import require_admin
from storefront.contracts.metrics import MetricsSnapshot
from storefront.routes.depends import require_metrics
from storefront.services.metrics import MetricsStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/metrics", response_model=MetricsSnapshot)
def get_metrics(store: MetricsStore = Depends(require_metrics)) -> MetricsSnapshot:
    """Current API, query, cache, user-activity and process counters."""
    return store.snapshot()


@router.post("/metrics/flush")
def flush_metrics(store: MetricsStore = Depends(require_metrics)) -> dict[str, int]:
    """Write the metrics summary to the log now instead of waiting for the timer."""
    lines = store.flush_summary()
    logger.info("Metrics summary flushed on demand (%s lines)", lines)
    return {"lines": lines}
