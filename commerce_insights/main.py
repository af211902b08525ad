"""
FastAPI application entry point for the Commerce Insights API.

The lifespan constructs the process-wide infrastructure explicitly and
stores it on app.state for the dependencies in core/dependencies.py:
- Database: asyncpg pool handle
- AnalyticsStore: persistence contract used by every pipeline stage
- DigestQueue: bounded background queue for scheduled digests
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from commerce_insights.api import api_router
from commerce_insights.core.config import get_settings
from commerce_insights.core.database import Database
from commerce_insights.jobs.digest_queue import DigestQueue
from commerce_insights.services.storage import AnalyticsStore


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Build the Database handle and connect its pool
        - Build the AnalyticsStore and start the DigestQueue worker
    On shutdown:
        - Drain and stop the DigestQueue
        - Close the database pool
    """
    # Startup
    logger.info("Commerce Insights API starting")
    settings = get_settings()

    database = Database.from_settings(settings)
    try:
        await database.connect()
        logger.info("Database connection pool initialized")
    except Exception as e:
        # Continue startup; the pool connects lazily on first query
        logger.error(f"Failed to initialize database: {e}")

    app.state.database = database
    app.state.store = AnalyticsStore(database)
    app.state.digest_queue = DigestQueue(maxsize=settings.digest_queue_size)
    app.state.digest_queue.start()

    yield

    # Shutdown
    logger.info("Commerce Insights API shutting down")
    await app.state.digest_queue.close()
    try:
        await database.close()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="Commerce Insights API",
    version="1.0.0",
    description=(
        "Analytics and advisory backend: aggregated run snapshots, "
        "recommendations, daily advice and digest delivery."
    ),
    lifespan=lifespan,
)

# Configure CORS middleware for the admin dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Next.js dev server
        "http://127.0.0.1:3000",  # Alternative localhost
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers (each carries its own prefix)
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer health checks.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.

    Returns:
        Dict with API name and version
    """
    return {
        "name": "Commerce Insights API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "commerce_insights.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
