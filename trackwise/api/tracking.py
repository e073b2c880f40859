"""Tracking endpoints hit by the browser script: the beacon pixel and the direct POST."""

import base64
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse, Response

from ..core.beacon_dispatcher import beacon_dispatcher
from ..core.errors import ValidationError
from ..core.ingestion_service import IngestionGateway
from ..core.session_correlator import session_correlator

router = APIRouter(tags=["Tracking"])

logger = logging.getLogger(__name__)

# 1x1 transparent GIF
PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
PIXEL_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

ingestion_gateway = IngestionGateway(session_correlator.ingest, beacon_dispatcher)


def get_ingestion_gateway() -> IngestionGateway:
    return ingestion_gateway


def pixel_response() -> Response:
    return Response(content=PIXEL_GIF, media_type="image/gif", headers=PIXEL_HEADERS)


@router.get("/beacon", summary="Beacon pixel")
@router.get("/tracking/pixel", include_in_schema=False)
async def beacon(
    request: Request,
    gateway: IngestionGateway = Depends(get_ingestion_gateway),
) -> Response:
    """
    Accept an event encoded in the query string and always answer with the
    pixel. The event is processed after the response, and failures are only
    visible in the logs.
    """
    try:
        gateway.accept_beacon(request.query_params.multi_items(), request.headers)
    except Exception as e:
        logger.error(f"❌ Beacon handler failed: {e}", exc_info=True)
    return pixel_response()


@router.post("/events", summary="Direct event ingestion")
@router.post("/tracking/data", include_in_schema=False)
async def receive_event(
    request: Request,
    gateway: IngestionGateway = Depends(get_ingestion_gateway),
) -> PlainTextResponse:
    """Store one JSON event synchronously; errors come back as `{"error": ...}`."""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if body is None:
        raise ValidationError("Request body must be a JSON object")

    result = await run_in_threadpool(gateway.accept_direct, body)
    logger.debug(f"Stored {body.get('eventType')!r} for session {result.session_id!r} ({result.outcome.value})")
    return PlainTextResponse("OK")


@router.options("/events", include_in_schema=False)
@router.options("/tracking/data", include_in_schema=False)
async def events_preflight() -> Response:
    """Plain OPTIONS without a preflight request method; CORS headers are added by the middleware."""
    return Response(status_code=200)
