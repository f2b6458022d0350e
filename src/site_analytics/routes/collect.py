"""
Ingestion routes: session bootstrap, page views, events and the other
per-occurrence records sent by the tracker.

Bodies are read as raw JSON rather than through FastAPI's body parsing so
that beacon deliveries (sent as text/plain) are accepted as well.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import AnalyticsConfig
from ..core.database import Database
from ..core.models import (
    ErrorEventRequest,
    EventRequest,
    FormSubmissionRequest,
    PageViewRequest,
    PerformanceMetricRequest,
    SessionInitRequest,
    SessionInitResponse,
)
from ..core.records import RecordWriter
from ..core.sessions import RequestContext, SessionStore
from ..errors import StorageError, ValidationError
from ..fingerprint import get_real_ip
from ..geo import IPGeolocator
from ..script import render_tracker_js

logger = logging.getLogger(__name__)

OK = {"success": True}


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


async def _read_json(request: Request) -> dict:
    """Decode the request body as a JSON object; an empty body is {}.

    The non-standard literals NaN, Infinity and -Infinity are rejected.
    """
    body = await request.body()
    if not body.strip():
        return {}
    try:
        data = json.loads(body, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ValidationError(f"Malformed JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _parse(model: type[BaseModel], data: dict):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        raise ValidationError(
            f"Missing or invalid fields: {', '.join(fields)}", fields
        ) from exc


def request_context(request: Request) -> RequestContext:
    """Collect the network and header metadata used for fingerprinting."""
    peer = request.client.host if request.client else None
    return RequestContext(
        ip_address=get_real_ip(request.headers, peer),
        user_agent=request.headers.get("user-agent", ""),
        accept_language=request.headers.get("accept-language", ""),
        accept_encoding=request.headers.get("accept-encoding", ""),
    )


async def _respond(name: str, handler: Callable[[], Awaitable[dict]]) -> JSONResponse:
    """Run an ingestion handler and map core errors onto HTTP responses."""
    try:
        return JSONResponse(await handler())
    except ValidationError as exc:
        logger.debug(f"Rejected {name}: {exc.message}")
        return JSONResponse(
            {"success": False, "error": exc.message, "fields": exc.fields},
            status_code=exc.status_code,
        )
    except StorageError as exc:
        logger.error(f"Failed to record {name}: {exc}")
        return JSONResponse(
            {"success": False, "error": "Internal server error"},
            status_code=exc.status_code,
        )


def create_collect_router(
    config: AnalyticsConfig,
    database: Database,
    geolocator: IPGeolocator | None = None,
) -> APIRouter:
    """Create the ingestion router.

    Args:
        config: Analytics configuration
        database: Storage backend shared with the read side
        geolocator: IP geolocation collaborator (defaults to the configured endpoint)
    """
    router = APIRouter(tags=["analytics-collect"])

    sessions = SessionStore(
        database,
        geolocator or IPGeolocator(config.geolocation_url, config.geolocation_timeout_seconds),
        session_timeout=timedelta(minutes=config.session_timeout_minutes),
    )
    records = RecordWriter(database)
    tracker_js = render_tracker_js(config.api_prefix, debug=config.debug)

    @router.post("/session")
    async def init_session(request: Request):
        """Resolve (continue or create) the session for this device."""
        async def handle() -> dict:
            payload = _parse(SessionInitRequest, await _read_json(request))
            resolution = await sessions.resolve_session(request_context(request), payload)
            return SessionInitResponse(
                session_id=resolution.session.session_id,
                visitor_id=resolution.session.visitor_id,
                is_returning_visitor=resolution.is_returning_visitor,
            ).to_json()

        return await _respond("session", handle)

    @router.post("/pageview")
    async def track_page_view(request: Request):
        """Store a page view and count it against its session."""
        async def handle() -> dict:
            payload = _parse(PageViewRequest, await _read_json(request))
            await records.insert_page_view(payload)
            await sessions.record_page_view(payload.session_id, payload.page, payload.duration)
            return OK

        return await _respond("page view", handle)

    @router.post("/event")
    async def track_event(request: Request):
        async def handle() -> dict:
            payload = _parse(EventRequest, await _read_json(request))
            await records.insert_event(payload)
            await sessions.record_activity(payload.session_id)
            return OK

        return await _respond("event", handle)

    @router.post("/form")
    async def track_form_submission(request: Request):
        async def handle() -> dict:
            payload = _parse(FormSubmissionRequest, await _read_json(request))
            await records.insert_form_submission(payload)
            await sessions.record_activity(payload.session_id)
            return OK

        return await _respond("form submission", handle)

    @router.post("/error")
    async def track_error(request: Request):
        async def handle() -> dict:
            payload = _parse(ErrorEventRequest, await _read_json(request))
            await records.insert_error(payload)
            await sessions.record_activity(payload.session_id)
            return OK

        return await _respond("error", handle)

    @router.post("/performance")
    async def track_performance(request: Request):
        async def handle() -> dict:
            payload = _parse(PerformanceMetricRequest, await _read_json(request))
            await records.insert_performance_metric(payload)
            await sessions.record_activity(payload.session_id)
            return OK

        return await _respond("performance metric", handle)

    @router.get("/tracker.js")
    async def serve_tracker():
        """Serve the browser tracker with caching."""
        return Response(
            tracker_js,
            media_type="application/javascript",
            headers={"Cache-Control": "public, max-age=3600"},
        )

    return router
