"""
Pydantic models for analytics data.

Python attributes are snake_case; the JSON wire format is camelCase.
"""
import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Upper bounds keep integers inside SQLite's signed 64-bit range
MAX_DURATION_MS = 2**31 - 1
MAX_SCREEN_VALUE = 100_000


class CamelModel(BaseModel):
    """Base model serialising to camelCase keys and accepting either form."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)

    def to_json(self) -> dict[str, Any]:
        """JSON-ready dict with wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)


def _load_json(value: str | None) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return None


# =============================================================================
# Ingestion Payloads
# =============================================================================

class ScreenInfo(CamelModel):
    width: int | None = Field(None, ge=0, le=MAX_SCREEN_VALUE)
    height: int | None = Field(None, ge=0, le=MAX_SCREEN_VALUE)
    color_depth: int | None = Field(None, ge=0, le=MAX_SCREEN_VALUE)


class SessionInitRequest(CamelModel):
    """Body of POST /session."""
    screen: ScreenInfo | None = None
    language: str | None = None
    timezone: str | None = None
    referrer: str | None = None
    current_url: str | None = None


class PageViewRequest(CamelModel):
    """Body of POST /pageview. Duration is in milliseconds."""
    session_id: str = Field(min_length=1)
    visitor_id: str = Field(min_length=1)
    page: str = Field(min_length=1)
    title: str | None = None
    referrer: str | None = None
    duration: int | None = Field(None, ge=0, le=MAX_DURATION_MS)
    scroll_depth: int | None = Field(None, ge=0, le=100)
    timestamp: datetime | None = None


class EventRequest(CamelModel):
    """Body of POST /event."""
    session_id: str = Field(min_length=1)
    visitor_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)  # interaction, engagement, error, timing, media, conversion
    event_category: str = Field(min_length=1)
    event_action: str = Field(min_length=1)
    event_label: str | None = None
    event_value: float | None = None
    page: str | None = None
    metadata: dict[str, Any] | None = None
    timestamp: datetime | None = None


class FormSubmissionRequest(CamelModel):
    """Body of POST /form."""
    session_id: str = Field(min_length=1)
    visitor_id: str = Field(min_length=1)
    form_id: str = Field(min_length=1)
    form_name: str = Field(min_length=1)
    success: bool
    fields: list[str] | None = None
    completion_time: int | None = Field(None, ge=0, le=MAX_DURATION_MS)
    page: str | None = None
    timestamp: datetime | None = None


class ErrorEventRequest(CamelModel):
    """Body of POST /error."""
    session_id: str = Field(min_length=1)
    visitor_id: str = Field(min_length=1)
    error_type: str = Field(min_length=1)
    error_message: str = Field(min_length=1)
    error_stack: str | None = None
    page: str | None = None
    user_action: str | None = None
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    timestamp: datetime | None = None


class PerformanceMetricRequest(CamelModel):
    """Body of POST /performance."""
    session_id: str = Field(min_length=1)
    visitor_id: str = Field(min_length=1)
    metric_type: Literal["web-vitals", "navigation", "resource", "custom"]
    metric_name: str = Field(min_length=1)
    value: float
    page: str | None = None
    additional_data: dict[str, Any] | None = None
    timestamp: datetime | None = None


class SessionInitResponse(CamelModel):
    success: bool = True
    session_id: str
    visitor_id: str
    is_returning_visitor: bool


# =============================================================================
# Raw Data Models
# =============================================================================

class Coordinates(CamelModel):
    lat: float
    lng: float


class Location(CamelModel):
    country: str = "Unknown"
    region: str = "Unknown"
    city: str = "Unknown"
    timezone: str | None = None
    coordinates: Coordinates | None = None


class Device(CamelModel):
    type: str = "unknown"
    browser: str = "Unknown"
    browser_version: str = "Unknown"
    os: str = "Unknown"
    os_version: str = "Unknown"
    is_mobile: bool = False
    is_tablet: bool = False
    is_desktop: bool = False


class VisitorSession(CamelModel):
    """A time-boxed burst of activity from one device."""
    session_id: str
    visitor_id: str
    device_fingerprint: str
    ip_address: str
    user_agent: str
    location: Location
    device: Device
    screen: ScreenInfo
    language: str
    timezone: str
    referrer: str | None = None

    first_visit: datetime
    last_activity: datetime
    page_views: int = 0
    total_duration: int = 0  # milliseconds
    is_returning_visitor: bool = False

    # Attribution, set at creation only
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    term: str | None = None
    content: str | None = None

    exit_page: str | None = None
    bounced: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "VisitorSession":
        coordinates = None
        if row.get("latitude") is not None and row.get("longitude") is not None:
            coordinates = Coordinates(lat=row["latitude"], lng=row["longitude"])
        return cls(
            session_id=row["session_id"],
            visitor_id=row["visitor_id"],
            device_fingerprint=row["device_fingerprint"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            location=Location(
                country=row.get("country") or "Unknown",
                region=row.get("region") or "Unknown",
                city=row.get("city") or "Unknown",
                timezone=row.get("location_timezone"),
                coordinates=coordinates,
            ),
            device=Device(
                type=row.get("device_type") or "unknown",
                browser=row.get("browser") or "Unknown",
                browser_version=row.get("browser_version") or "Unknown",
                os=row.get("os") or "Unknown",
                os_version=row.get("os_version") or "Unknown",
                is_mobile=bool(row.get("is_mobile")),
                is_tablet=bool(row.get("is_tablet")),
                is_desktop=bool(row.get("is_desktop")),
            ),
            screen=ScreenInfo(
                width=row.get("screen_width"),
                height=row.get("screen_height"),
                color_depth=row.get("color_depth"),
            ),
            language=row["language"],
            timezone=row["timezone"],
            referrer=row.get("referrer"),
            first_visit=row["first_visit"],
            last_activity=row["last_activity"],
            page_views=row.get("page_views") or 0,
            total_duration=row.get("total_duration") or 0,
            is_returning_visitor=bool(row.get("is_returning_visitor")),
            source=row.get("source"),
            medium=row.get("medium"),
            campaign=row.get("campaign"),
            term=row.get("term"),
            content=row.get("content"),
            exit_page=row.get("exit_page"),
            bounced=bool(row.get("bounced")),
        )


class PageView(CamelModel):
    """A single page visited within a session."""
    session_id: str
    visitor_id: str
    page: str
    title: str | None = None
    referrer: str | None = None
    timestamp: datetime
    duration: int | None = None  # milliseconds, unset until the page is left
    scroll_depth: int | None = None

    # Snapshot of the session at write time
    country: str | None = None
    region: str | None = None
    city: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    is_mobile: bool | None = None

    @classmethod
    def from_row(cls, row: dict) -> "PageView":
        data = dict(row)
        if data.get("is_mobile") is not None:
            data["is_mobile"] = bool(data["is_mobile"])
        return cls.model_validate(data)


class Event(CamelModel):
    """A discrete interaction. Immutable once written."""
    session_id: str
    visitor_id: str
    event_type: str
    event_category: str
    event_action: str
    event_label: str | None = None
    event_value: float | None = None
    page: str | None = None
    timestamp: datetime
    metadata: dict[str, Any] | None = None

    country: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Event":
        data = dict(row)
        data["metadata"] = _load_json(data.get("metadata"))
        return cls.model_validate(data)


class FormSubmission(CamelModel):
    session_id: str
    visitor_id: str
    form_id: str
    form_name: str
    success: bool
    fields: list[str] | None = None
    completion_time: int | None = None
    page: str | None = None
    timestamp: datetime

    country: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "FormSubmission":
        data = dict(row)
        data["success"] = bool(data.get("success"))
        data["fields"] = _load_json(data.get("fields"))
        return cls.model_validate(data)


class ErrorEvent(CamelModel):
    session_id: str
    visitor_id: str
    error_type: str
    error_message: str
    error_stack: str | None = None
    page: str | None = None
    user_action: str | None = None
    severity: str = "medium"
    timestamp: datetime

    country: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "ErrorEvent":
        return cls.model_validate(dict(row))


class PerformanceMetric(CamelModel):
    session_id: str
    visitor_id: str
    metric_type: str
    metric_name: str
    value: float
    page: str | None = None
    timestamp: datetime
    additional_data: dict[str, Any] | None = None

    device_type: str | None = None
    browser: str | None = None
    os: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "PerformanceMetric":
        data = dict(row)
        data["additional_data"] = _load_json(data.get("additional_data"))
        return cls.model_validate(data)


# =============================================================================
# Aggregated Stats Models
# =============================================================================

class Overview(CamelModel):
    """Headline numbers for a period."""
    total_visitors: int = 0  # sessions started in the period
    unique_visitors: int = 0
    total_sessions: int = 0  # sessions active in the period
    total_page_views: int = 0
    returning_visitors: int = 0
    new_visitors: int = 0
    avg_session_duration: float = 0  # milliseconds
    bounce_rate: float = 0  # session-level, percentage 0-100


class PageStats(CamelModel):
    page: str
    views: int
    unique_visitors: int


class BreakdownItem(CamelModel):
    name: str
    count: int


class DailyVisitors(CamelModel):
    date: str  # YYYY-MM-DD
    visitors: int
    unique_visitors: int


class EventCount(CamelModel):
    category: str
    action: str
    count: int


class DateRange(CamelModel):
    start: datetime
    end: datetime


class StatsResponse(CamelModel):
    """The /stats document."""
    overview: Overview
    top_pages: list[PageStats]
    device_types: list[BreakdownItem]
    browsers: list[BreakdownItem]
    operating_systems: list[BreakdownItem]
    countries: list[BreakdownItem]
    daily_visitors: list[DailyVisitors]
    top_events: list[EventCount]
    period: str
    date_range: DateRange


# =============================================================================
# Visitor Models
# =============================================================================

class VisitorLocation(CamelModel):
    country: str = "Unknown"
    city: str = "Unknown"


class VisitorDevice(CamelModel):
    type: str = "Unknown"
    browser: str = "Unknown"
    os: str = "Unknown"
    is_mobile: bool = False


class VisitorListItem(CamelModel):
    visitor_id: str
    session_id: str
    location: VisitorLocation
    device: VisitorDevice
    first_visit: datetime
    last_activity: datetime
    page_views: int = 0
    total_duration: int = 0
    is_returning_visitor: bool = False
    source: str = "Direct"
    medium: str = "None"
    bounced: bool = False
    session_duration: int = 0  # minutes
    total_interactions: int = 0
    last_interaction: datetime | None = None


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_count: int
    has_next: bool
    has_prev: bool


class VisitorFilters(CamelModel):
    sort_by: str
    sort_order: str
    date_from: str | None = None
    date_to: str | None = None
    country: str | None = None
    device: str | None = None
    is_returning: bool | None = None


class VisitorListData(CamelModel):
    visitors: list[VisitorListItem]
    pagination: Pagination
    filters: VisitorFilters


class VisitorListResponse(CamelModel):
    success: bool = True
    data: VisitorListData


class VisitorSummary(CamelModel):
    total_sessions: int = 0
    total_page_views: int = 0
    total_events: int = 0
    total_form_submissions: int = 0
    total_errors: int = 0
    total_duration: int = 0
    average_session_duration: float = 0
    bounce_rate: float = 0  # session-level: share of sessions with one page view
    first_visit: datetime | None = None
    last_visit: datetime | None = None
    is_returning_visitor: bool = False
    countries: list[str] = []
    devices: list[str] = []
    browsers: list[str] = []
    operating_systems: list[str] = []
    sources: list[str] = []
    campaigns: list[str] = []


class PageEngagement(CamelModel):
    """Per-page rollup for one visitor.

    A page bounce here is a visit shorter than 30 seconds, which is a
    different measure from the session-level bounce rate.
    """
    page: str
    views: int = 0
    total_duration: int = 0
    average_duration: float = 0
    max_scroll_depth: int = 0
    page_bounces: int = 0
    page_bounce_rate: float = 0


class EventActionStats(CamelModel):
    category: str
    action: str
    count: int = 0
    labels: list[str] = []
    total_value: float = 0


class PerformanceSample(CamelModel):
    value: float
    timestamp: datetime
    page: str | None = None


class PerformanceStats(CamelModel):
    metric_name: str
    metric_type: str
    count: int = 0
    total_value: float = 0
    average_value: float = 0
    min_value: float = 0
    max_value: float = 0
    values: list[PerformanceSample] = []


class VisitorAnalytics(CamelModel):
    page_stats: list[PageEngagement]
    event_stats: list[EventActionStats]
    performance_stats: list[PerformanceStats]


class VisitorDetail(CamelModel):
    """The /visitors/{visitorId} bundle."""
    visitor_id: str
    stats: VisitorSummary
    sessions: list[VisitorSession]
    page_views: list[PageView]
    events: list[Event]
    form_submissions: list[FormSubmission]
    errors: list[ErrorEvent]
    performance_metrics: list[PerformanceMetric]
    analytics: VisitorAnalytics
