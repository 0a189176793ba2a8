"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pdp_coach.api.routes import health_router, metrics_router, runs_router
from pdp_coach.api.routes.dependencies import get_run_registry
from pdp_coach.config.protocol_rules_loader import get_protocol_rules
from pdp_coach.config.settings import get_settings
from pdp_coach.core.error_handlers import domain_error_handler
from pdp_coach.core.exceptions import DomainError
from pdp_coach.core.logging import configure_logging, get_logger
from pdp_coach.db.database import close_engine, init_db
from pdp_coach.middleware.request_id import RequestIDMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()

    # Startup: Initialize database and load protocol rules
    await init_db()
    get_protocol_rules()
    logger.info("Application started", app=get_settings().app_name)

    yield
    # Shutdown: exit every in-flight run before closing connections
    await get_run_registry().close_all()
    await close_engine()
    logger.info("Application stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Runs prescribed workout sessions step by step and coaches the next one",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainError, domain_error_handler)

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(runs_router, prefix="/runs", tags=["Session Runs"])

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pdp_coach.main:app", host="0.0.0.0", port=8000, reload=True)
