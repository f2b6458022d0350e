"""
Read-side routes: the stats document, the visitor list and visitor detail.

When a passkey is configured every route requires it, either in the
X-Analytics-Key header or in the analytics_auth cookie.
"""

import logging
from datetime import datetime, time, timezone

from fastapi import APIRouter, Cookie, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from ..config import AnalyticsConfig, verify_passkey
from ..core.client import PERIOD_DAYS, AnalyticsClient, resolve_period
from ..core.models import VisitorListResponse
from ..errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

# Auth constants
AUTH_COOKIE_NAME = "analytics_auth"
AUTH_HEADER_NAME = "X-Analytics-Key"


def _parse_datetime(value: str | None, name: str, end_of_day: bool = False) -> datetime | None:
    """Parse an ISO date or datetime query parameter.

    A bare date (YYYY-MM-DD) means the start of that day, or its last instant
    when used as an upper bound. Naive values are taken as UTC.

    Raises:
        HTTPException: If the value is not ISO 8601
    """
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {name}. Use ISO 8601 (e.g., 2024-01-15 or 2024-01-15T10:00:00Z)"
        ) from None

    if len(value) == 10 and end_of_day:
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_range(start: str | None, end: str | None, start_name: str, end_name: str):
    start_dt = _parse_datetime(start, start_name)
    end_dt = _parse_datetime(end, end_name, end_of_day=True)
    if start_dt and end_dt and end_dt < start_dt:
        raise HTTPException(
            status_code=400,
            detail=f"{end_name} must be on or after {start_name}"
        )
    return start_dt, end_dt


def create_dashboard_router(config: AnalyticsConfig, client: AnalyticsClient) -> APIRouter:
    """Create the read-side router.

    Args:
        config: Analytics configuration
        client: Aggregation client over the shared database
    """
    router = APIRouter(tags=["analytics"])

    def _check_auth(header_key: str | None, auth_cookie: str | None) -> None:
        """Reject the request unless the passkey matches (when one is set)."""
        if not config.has_auth:
            return
        provided = header_key or auth_cookie
        if not provided or not verify_passkey(config.passkey, provided):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def _storage_failure(exc: StorageError) -> JSONResponse:
        logger.error(f"Analytics query failed: {exc}")
        return JSONResponse(
            {"success": False, "error": "Internal server error"},
            status_code=exc.status_code,
        )

    @router.get("/stats")
    async def stats(
        period: str = Query(config.default_period, description=f"One of {', '.join(PERIOD_DAYS)}"),
        page: str | None = Query(None, description="Restrict page-view figures to one page"),
        key: str | None = Header(None, alias=AUTH_HEADER_NAME),
        auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME),
    ):
        """Overview, top pages, breakdowns, daily series and top events."""
        _check_auth(key, auth)

        try:
            result = await client.get_stats(resolve_period(period), page)
        except StorageError as exc:
            return _storage_failure(exc)
        return result.to_json()

    @router.get("/visitors")
    async def visitors(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        sort_by: str = Query("lastActivity", alias="sortBy"),
        sort_order: str = Query("desc", alias="sortOrder"),
        date_from: str | None = Query(None, alias="dateFrom", description="ISO date or datetime"),
        date_to: str | None = Query(None, alias="dateTo", description="ISO date or datetime"),
        country: str | None = None,
        device: str | None = None,
        is_returning: bool | None = Query(None, alias="isReturning"),
        key: str | None = Header(None, alias=AUTH_HEADER_NAME),
        auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME),
    ):
        """Paginated list of sessions with interaction counts."""
        _check_auth(key, auth)
        start, end = _parse_range(date_from, date_to, "dateFrom", "dateTo")

        try:
            data = await client.list_visitors(
                page=page,
                limit=limit,
                sort_by=sort_by,
                sort_order=sort_order,
                date_from=start,
                date_to=end,
                country=country,
                device=device,
                is_returning=is_returning,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.message) from None
        except StorageError as exc:
            return _storage_failure(exc)
        return VisitorListResponse(data=data).to_json()

    @router.get("/visitors/{visitor_id}")
    async def visitor_detail(
        visitor_id: str,
        start_date: str | None = Query(None, alias="startDate"),
        end_date: str | None = Query(None, alias="endDate"),
        key: str | None = Header(None, alias=AUTH_HEADER_NAME),
        auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME),
    ):
        """Sessions, records and rollups for one visitor."""
        _check_auth(key, auth)
        start, end = _parse_range(start_date, end_date, "startDate", "endDate")

        try:
            detail = await client.get_visitor_detail(visitor_id, start, end)
        except NotFoundError as exc:
            raise HTTPException(status_code=exc.status_code, detail=str(exc)) from None
        except StorageError as exc:
            return _storage_failure(exc)
        return detail.to_json()

    return router
