"""API routes."""

from worktime_engine.api.routes.clock import router as clock_router
from worktime_engine.api.routes.compliance import router as compliance_router
from worktime_engine.api.routes.health import router as health_router
from worktime_engine.api.routes.policies import router as policies_router
from worktime_engine.api.routes.surcharges import router as surcharges_router

__all__ = [
    "clock_router",
    "compliance_router",
    "health_router",
    "policies_router",
    "surcharges_router",
]
