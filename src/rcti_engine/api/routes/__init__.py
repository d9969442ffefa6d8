"""API routes."""

from rcti_engine.api.routes.deductions import router as deductions_router
from rcti_engine.api.routes.health import router as health_router
from rcti_engine.api.routes.rctis import router as rctis_router

__all__ = ["deductions_router", "health_router", "rctis_router"]
