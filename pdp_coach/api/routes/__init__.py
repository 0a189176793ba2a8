"""API routes module."""
from pdp_coach.api.routes.health import router as health_router
from pdp_coach.api.routes.metrics import router as metrics_router
from pdp_coach.api.routes.runs import router as runs_router

__all__ = [
    "health_router",
    "metrics_router",
    "runs_router",
]
