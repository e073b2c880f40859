"""System endpoints for health checks, system information and connectivity diagnostics."""

import json
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.beacon_dispatcher import beacon_dispatcher
from ..core.config import settings
from ..core.database import get_db

router = APIRouter(prefix="/system", tags=["System"])

logger = logging.getLogger(__name__)


@router.get("/health", summary="Service health check")
async def health_check() -> dict:
    """Check the health and status of the API."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc),
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME
    }


@router.get("/info", summary="System information")
def system_info(db: Session = Depends(get_db)) -> dict:
    """Get system information and configuration."""
    try:
        db.execute(text("SELECT 1"))
        database_status = "connected"
    except SQLAlchemyError as e:
        logger.warning(f"Database check failed: {e}")
        database_status = "unavailable"

    return {
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "debug": settings.DEBUG,
        "database_url": settings.DATABASE_URL.split("@")[-1] if "@" in settings.DATABASE_URL else "configured",
        "database": database_status,
        "domain_cache": "redis" if settings.REDIS_URL else "memory",
        "beacon_dispatcher": {
            "running": beacon_dispatcher.is_running,
            "pending": beacon_dispatcher.pending,
            "dropped": beacon_dispatcher.dropped,
        },
        "timestamp": datetime.now(timezone.utc)
    }


@router.get("/diagnose", summary="Tracking connectivity check")
async def diagnose_get(request: Request) -> dict:
    """Echo what a tracking script's GET looks like from the server side."""
    origin = request.headers.get("origin")
    logger.info(f"[diagnose GET] origin={origin}")
    user_agent = request.headers.get("user-agent")
    return {
        "status": "OK",
        "method": "GET",
        "timestamp": datetime.now(timezone.utc),
        "origin": origin,
        "userAgent": user_agent[:100] if user_agent else None,
        "headers": {
            "content-type": request.headers.get("content-type"),
            "accept": request.headers.get("accept"),
            "referer": request.headers.get("referer"),
        },
        "message": "Diagnostic endpoint is working - CORS should be functional",
    }


@router.post("/diagnose", summary="Tracking POST connectivity check")
async def diagnose_post(request: Request) -> dict:
    """Echo a POSTed body back, parsed as JSON when possible."""
    origin = request.headers.get("origin")
    logger.info(f"[diagnose POST] origin={origin}")
    body = (await request.body()).decode("utf-8", errors="replace")
    try:
        parsed_body = json.loads(body)
    except ValueError:
        parsed_body = {"raw": body, "parseError": "Invalid JSON"}

    return {
        "status": "OK",
        "method": "POST",
        "timestamp": datetime.now(timezone.utc),
        "origin": origin,
        "bodyReceived": bool(body),
        "bodyLength": len(body),
        "parsedBody": parsed_body,
        "headers": {
            "content-type": request.headers.get("content-type"),
            "content-length": request.headers.get("content-length"),
        },
        "message": "POST diagnostic successful - CORS and request parsing working",
    }
