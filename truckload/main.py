"""
FastAPI application entry point for Truckload.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from truckload.api.routes import router as api_router
from truckload.config import get_settings
from truckload.migration import JobRunner, WebhookCorrelator
from truckload.store import StorePool

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    settings = get_settings()
    logger.info("Starting Truckload")
    logger.info(f"Store backend: {settings.store_backend}")
    if not settings.mux_token_id:
        logger.warning("Mux credentials not configured; only discovery jobs can run")

    # Stores open lazily per environment and live until shutdown
    stores = StorePool(settings)
    app.state.stores = stores
    app.state.runner = JobRunner(stores, settings=settings)
    app.state.correlator = WebhookCorrelator(stores, settings)

    yield

    # Shutdown
    logger.info("Shutting down Truckload")
    stores.close_all()


# Create FastAPI app
app = FastAPI(
    title="Truckload",
    description="Bulk video migration from storage buckets and video platforms to Mux",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(api_router, prefix="/api")


def main():
    """Run the application with uvicorn."""
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "truckload.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
