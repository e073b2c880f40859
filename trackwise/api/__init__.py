"""API routes module."""

from .tracking import router as tracking_router
from .analytics import router as analytics_router
from .system import router as system_router

__all__ = [
    "tracking_router",
    "analytics_router",
    "system_router",
]
