"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.api.limiter import limiter
from app.middleware.error_handler import ErrorHandlerMiddleware
from app.api.v1.routers import land_use

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Overpass endpoints: {', '.join(settings.overpass_endpoints)}")
    logger.info(f"Retry config: attempts={settings.max_retry_attempts}, "
                f"base={settings.retry_base_delay}s, cap={settings.retry_max_delay}s")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    yield

    # Shutdown
    from app.infrastructure.overpass_client import get_overpass_client
    logger.info("Shutting down application...")
    client = get_overpass_client()
    await client.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    version=settings.app_version,
    description="""
    Land-use allocation API

    This API estimates how the fertilizer produced at treatment plants can be
    distributed over the agricultural land around them.

    ## Features

    - **Tolerant ingestion**: Site spreadsheets with varying headers, decimal
      commas, thousands separators and unit suffixes
    - **Area of interest**: Geodesic circles around each site merged into one
      area, with fallbacks when the merge fails
    - **Resilient geodata**: Overpass queries cached per process, retried with
      exponential backoff and rotated across mirrors
    - **Proportional allocation**: Production split across clipped parcels by
      geodesic area, with a land-use summary
    - **Rate Limiting**: Protects the API from abuse
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware with configurable origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add global error handling middleware
app.add_middleware(ErrorHandlerMiddleware)

# Include routers
app.include_router(land_use.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.

    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
    }
