"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.database import init_db, close_db
from .core.cors_middleware import TrackingCORSMiddleware
from .core.errors import TelemetryError
from .core.startup_tasks import startup_tasks
from .api import tracking_router, analytics_router, system_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    init_db()

    # Start background tasks
    async with startup_tasks():
        yield

    # Shutdown
    close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="Visitor session tracking and exit analytics for websites.",
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Tracking endpoints allow all origins, other endpoints are restricted
app.add_middleware(
    TrackingCORSMiddleware,
    restricted_origins=settings.RESTRICTED_ORIGINS,
    tracking_paths=settings.TRACKING_PATHS,
)


@app.exception_handler(TelemetryError)
async def telemetry_error_handler(request: Request, exc: TelemetryError):
    """Answer ingestion and analytics errors as `{"error": message}`."""
    if exc.http_status >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler so unexpected failures keep the error shape."""
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include API routers
app.include_router(tracking_router)
app.include_router(analytics_router)
app.include_router(system_router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/system/health"
    }
