"""
Beacon collection routes.

Each ``POST /api/track/<kind>`` takes a JSON object, fills request-derived
fields the client did not send (IP, city, country, user agent) and hands
it to the event recorder.
"""

import logging
from urllib.parse import unquote

from fastapi import APIRouter, Request

from ..core.recorder import EventRecorder
from .auth import error_response, read_json_object

logger = logging.getLogger(__name__)

# Payload field -> request headers consulted in order when the field is absent
HEADER_FALLBACKS = {
    "ipAddress": ("x-forwarded-for", "x-real-ip"),
    "city": ("cf-ipcity", "x-vercel-ip-city", "x-appengine-city"),
    "country": ("cf-ipcountry", "x-vercel-ip-country", "x-appengine-country"),
    "userAgent": ("user-agent",),
}

# /api/track/<kind> -> EventRecorder method
TRACK_METHODS = {
    "session": "track_session",
    "view": "track_page_view",
    "ping": "track_ping",
    "click": "track_click",
    "goal": "track_goal",
}


def _header_value(request: Request, field: str) -> str | None:
    for header in HEADER_FALLBACKS[field]:
        value = request.headers.get(header)
        if not value:
            continue
        if header == "x-forwarded-for":
            value = value.split(",")[0]
        elif field == "city":
            value = unquote(value)
        value = value.strip()
        if value:
            return value

    if field == "ipAddress" and request.client:
        return request.client.host
    return None


def enrich_payload(payload: dict, request: Request) -> dict:
    """Copy of ``payload`` with header-derived fields filled in.

    Values sent by the client always win over headers.
    """
    enriched = dict(payload)
    for field in HEADER_FALLBACKS:
        if enriched.get(field) in (None, ""):
            value = _header_value(request, field)
            if value is not None:
                enriched[field] = value
    return enriched


def create_tracking_router(recorder: EventRecorder) -> APIRouter:
    """Create the beacon collection router.

    Args:
        recorder: Event recorder that persists beacons
    """
    router = APIRouter(tags=["tracking"])

    @router.post("/api/track/{kind}")
    async def track(kind: str, request: Request):
        """Record one beacon of the given kind."""
        method = TRACK_METHODS.get(kind)
        if method is None:
            return error_response(404, f"Unknown event type {kind!r}")
        handler = getattr(recorder, method)

        payload = await read_json_object(request)
        if payload is None:
            logger.debug(f"Rejected {kind} beacon without a JSON object body")
            return error_response(400, "Request body must be a JSON object.")

        try:
            result = await handler(enrich_payload(payload, request))
        except Exception:
            logger.exception(f"Error recording {kind} event")
            return error_response(500, f"Failed to record {kind} event")

        return {"success": True, "sessionId": result.session_id}

    return router
