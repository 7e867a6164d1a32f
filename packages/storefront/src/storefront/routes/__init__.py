"""API routes."""

from storefront.routes.admin import router as admin_router
from storefront.routes.health import router as health_router

__all__ = [
    "admin_router",
    "health_router",
]
