"""
FastAPI main application for Nightly Stats.

Provides REST API endpoints for reviewing nightly failures, discounting
them, building the nightly report and triggering Jenkins jobs.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from nightly_stats.config import get_settings
from nightly_stats.database import get_pool
from nightly_stats.services.errors import (
    StoreConnectionError, StoreAuthenticationError,
    JenkinsConnectionError, JenkinsAuthenticationError, TestNotFoundError
)

# Configure logging from settings
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),  # Console output
    ]
)
logger = logging.getLogger(__name__)

RESET_DB_ACTION = "reset-db-connection"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting Nightly Stats API")
    settings = get_settings()
    logger.info(f"Jenkins: {settings.JENKINS_URL}")
    logger.info(f"Operator: {settings.operator_name}")

    # The store may be down at startup; requests surface the banner instead
    try:
        get_pool().health_check()
        logger.info("Result store reachable")
    except (StoreConnectionError, StoreAuthenticationError) as e:
        logger.warning(f"Result store not reachable at startup: {e}")

    yield

    # Shutdown
    logger.info("Shutting down Nightly Stats API")
    get_pool().reset()


# Create FastAPI application
app = FastAPI(
    title="Nightly Stats API",
    description="""
    REST API for the QA nightly stats dashboard.

    ## Authentication

    API key authentication can be enabled via environment variables:
    - Set `API_KEY` to require authentication for write operations
    - Provide the key in the `X-API-Key` request header

    When authentication is disabled (no API key set), all endpoints are publicly accessible.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure rate limiting
if settings.RATE_LIMIT_ENABLED:
    # Create limiter with default limits
    rate_limit_string = f"{settings.RATE_LIMIT_PER_MINUTE}/minute"
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[rate_limit_string]
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(f"Rate limiting enabled: {rate_limit_string}")
else:
    # Create limiter without limits (disabled)
    limiter = Limiter(key_func=get_remote_address, enabled=False)
    app.state.limiter = limiter
    logger.info("Rate limiting disabled")

# Configure CORS with specific allowed origins
allowed_origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS else []
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,  # Specific origins only
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
)

# Add SlowAPI middleware for rate limiting
if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(SlowAPIMiddleware)


# Global exception handlers
@app.exception_handler(StoreConnectionError)
async def store_connection_error_handler(request: Request, exc: StoreConnectionError):
    """Result store unreachable: the UI keeps a banner up until reset."""
    logger.error(f"Result store unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "Database connection error",
            "detail": str(exc),
            "persistent_banner": True,
            "action": RESET_DB_ACTION
        }
    )


@app.exception_handler(StoreAuthenticationError)
async def store_auth_error_handler(request: Request, exc: StoreAuthenticationError):
    """Handle result store credential failures."""
    logger.error(f"Result store authentication failed: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "Database authentication error",
            "detail": str(exc),
            "persistent_banner": True,
            "action": RESET_DB_ACTION
        }
    )


@app.exception_handler(JenkinsConnectionError)
async def jenkins_connection_error_handler(request: Request, exc: JenkinsConnectionError):
    """Handle Jenkins being unreachable or slow."""
    logger.error(f"Jenkins unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "Jenkins connection error",
            "detail": str(exc)
        }
    )


@app.exception_handler(JenkinsAuthenticationError)
async def jenkins_auth_error_handler(request: Request, exc: JenkinsAuthenticationError):
    """Handle Jenkins rejecting the operator's credentials."""
    logger.error(f"Jenkins authentication failed: {exc}")
    return JSONResponse(
        status_code=502,
        content={
            "error": "Jenkins authentication error",
            "detail": str(exc)
        }
    )


@app.exception_handler(TestNotFoundError)
async def test_not_found_handler(request: Request, exc: TestNotFoundError):
    """Handle lookups of unknown result ids."""
    logger.warning(f"{exc}")
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not found",
            "detail": str(exc)
        }
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle SQLAlchemy database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Database error",
            "detail": "An error occurred while accessing the database"
        }
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions (often from invalid input)."""
    logger.warning(f"Value error: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid input",
            "detail": str(exc)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


# Health check endpoints
@app.get("/health", tags=["System"])
async def health_check():
    """
    Basic health check endpoint - returns minimal status.

    Returns:
        Status information about the application
    """
    return {
        "status": "healthy",
        "version": "1.0.0"
    }


@app.get("/health/detailed", tags=["System"])
async def detailed_health_check():
    """
    Detailed health check endpoint.

    Checks:
    - Application status
    - Result store connectivity (with the banner flag the UI shows)

    Returns:
        Comprehensive health status
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    try:
        get_pool().health_check()
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful",
            "persistent_banner": False
        }
    except (StoreConnectionError, StoreAuthenticationError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": str(e),
            "persistent_banner": True,
            "action": RESET_DB_ACTION
        }
        logger.error(f"Database health check failed: {e}")

    health_status["checks"]["jenkins"] = {
        "status": "configured" if settings.JENKINS_API_TOKEN else "unconfigured",
        "url": settings.JENKINS_URL
    }

    return health_status


@app.get("/api/v1", tags=["System"])
async def api_root():
    """
    API root endpoint.

    Returns:
        Welcome message with API documentation link
    """
    return {
        "message": "Nightly Stats API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": {
            "basic": "/health",
            "detailed": "/health/detailed"
        }
    }


# Import and register routers with API versioning
from nightly_stats.routers import results, reports, jenkins, system

app.include_router(results.router, prefix="/api/v1/results", tags=["Results v1"])
app.include_router(reports.router, prefix="/api/v1/reports", tags=["Reports v1"])
app.include_router(jenkins.router, prefix="/api/v1/jenkins", tags=["Jenkins v1"])
app.include_router(system.router, prefix="/api/v1/system", tags=["System v1"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "nightly_stats.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
