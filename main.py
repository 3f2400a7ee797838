import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from projectshelf.config import settings
from projectshelf.database import Database
from projectshelf.exception_handlers import register_exception_handlers
from projectshelf.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from projectshelf.routes import analytics, monitoring
from projectshelf.services.container import build_analytics_services
from projectshelf.utils.metrics import PrometheusMiddleware

logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, database: Database) -> None:
    """Connect the storage handle and hang the analytics services off app.state."""
    database.connect()
    app.state.db = database
    app.state.analytics = build_analytics_services(database, settings.analytics_timezone)


def create_app(database: Database | None = None) -> FastAPI:
    """Create the FastAPI application."""
    database = database or Database(settings.database_url, environment=settings.environment, echo=settings.debug)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up the application...")
        attach_services(app, database)
        if settings.debug:
            await database.create_all()
            logger.info("Database tables created (if not existing).")
        yield
        logger.info("Shutting down the application...")
        await database.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Engagement analytics for ProjectShelf portfolios",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(monitoring.router)
    app.include_router(analytics.router, prefix="/api/analytics")

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


setup_structured_logging(log_level=settings.log_level, json_format=settings.log_json)
app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
