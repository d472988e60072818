"""
FastAPI application entry point for the content experiment automation engine.

The lifespan opens the database pool, builds the automation services around the
Postgres adapters and the configured variant generator, and starts the
scheduler loop when AUTOMATION_ENABLED is set. Shutdown stops the loop before
closing the pool.
"""

import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncGenerator

from fastapi import FastAPI

from content_autotest.api.automation import router as automation_router
from content_autotest.core.config import get_settings
from content_autotest.core.database import close_db, init_db
from content_autotest.jobs.automation_scheduler import build_automation_services
from content_autotest.jobs.slack_digest import send_cycle_digest
from content_autotest.services.generation import load_variant_generator
from content_autotest.services.store import PostgresContentStore, PostgresEventSource

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    On startup: pool -> services -> scheduler loop.
    On shutdown: scheduler loop -> pool.
    """
    logger.info("Content automation API starting")
    settings = get_settings()
    app.state.automation = None

    try:
        await init_db()
        logger.info("Database connection pool initialized")

        services = build_automation_services(
            PostgresContentStore(),
            PostgresEventSource(),
            load_variant_generator(settings.variant_generator),
            settings,
            notifier=partial(send_cycle_digest, settings=settings),
        )
        app.state.automation = services

        if settings.automation_enabled:
            await services.scheduler.start()
        else:
            logger.info("Automation scheduler disabled; manual triggers only")
    except Exception as e:
        logger.error(f"Failed to initialize automation services: {e}")

    yield

    logger.info("Content automation API shutting down")
    if app.state.automation is not None:
        await app.state.automation.scheduler.stop()
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Content Automation API",
    version="1.0.0",
    description=(
        "Automated A/B testing of content items: baselines, candidate detection, "
        "experiment lifecycle, Bayesian evaluation and winner promotion."
    ),
    lifespan=lifespan,
)

app.include_router(automation_router, prefix="/automation", tags=["automation"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Content Automation API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "content_autotest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
