"""API routes."""

from casesync.api.routes.config import router as config_router
from casesync.api.routes.health import router as health_router
from casesync.api.routes.payments import router as payments_router
from casesync.api.routes.sync import router as sync_router

__all__ = ["health_router", "sync_router", "config_router", "payments_router"]
