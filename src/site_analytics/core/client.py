"""
Read-side queries over sessions, page views and events.

Everything here is read-only. Ties in count-ordered results come back in
whatever order the database yields them.
"""
import asyncio
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from ..errors import NotFoundError, ValidationError
from .database import Database, to_db_timestamp, utcnow
from .models import (
    BreakdownItem,
    DailyVisitors,
    DateRange,
    ErrorEvent,
    Event,
    EventCount,
    FormSubmission,
    Overview,
    PageStats,
    PageView,
    Pagination,
    PerformanceMetric,
    StatsResponse,
    VisitorAnalytics,
    VisitorDetail,
    VisitorDevice,
    VisitorFilters,
    VisitorListData,
    VisitorListItem,
    VisitorLocation,
    VisitorSession,
)
from .rollups import (
    event_action_stats,
    page_engagement,
    performance_stats,
    session_bounce_rate,
    summarize_visitor,
)

PERIOD_DAYS = {"1d": 1, "7d": 7, "30d": 30, "90d": 90, "1y": 365}
DEFAULT_PERIOD = "7d"

# Session columns that can be broken down; keys double as an allowlist
BREAKDOWN_COLUMNS = {
    "device_type": "unknown",
    "browser": "Unknown",
    "os": "Unknown",
    "country": "Unknown",
}

VISITOR_SORT_COLUMNS = {
    "lastActivity": "s.last_activity",
    "firstVisit": "s.first_visit",
    "pageViews": "s.page_views",
    "totalDuration": "s.total_duration",
    "interactions": "total_interactions",
}


def resolve_period(period: str | None) -> str:
    """Map unknown or missing presets to the default."""
    return period if period in PERIOD_DAYS else DEFAULT_PERIOD


def period_start(period: str, now: datetime) -> datetime:
    return now - timedelta(days=PERIOD_DAYS[resolve_period(period)])


class AnalyticsClient:
    """Aggregations for dashboards and visitor drill-downs."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = clock

    async def _query(self, sql: str, params: list | None = None) -> list[dict]:
        return await self.db.query(sql, params)

    # =========================================================================
    # OVERVIEW
    # =========================================================================

    async def get_overview(self, since: datetime, page: str | None = None) -> Overview:
        """Headline numbers for sessions started (or active) since `since`."""
        since_str = to_db_timestamp(since)

        sessions = await self._query(
            """
            SELECT
                COUNT(*) as total_visitors,
                COUNT(DISTINCT visitor_id) as unique_visitors,
                SUM(CASE WHEN is_returning_visitor = 1 THEN 1 ELSE 0 END) as returning_visitors,
                SUM(CASE WHEN page_views = 1 THEN 1 ELSE 0 END) as bounced_sessions,
                AVG(CASE WHEN total_duration > 0 THEN total_duration END) as avg_duration
            FROM sessions
            WHERE first_visit >= ?
            """,
            [since_str],
        )
        active = await self._query(
            "SELECT COUNT(*) as total_sessions FROM sessions WHERE last_activity >= ?",
            [since_str],
        )
        page_sql, page_params = self._build_page_filter_sql(page)
        views = await self._query(
            f"SELECT COUNT(*) as total_page_views FROM page_views WHERE timestamp >= ? {page_sql}",
            [since_str] + page_params,
        )

        session_data = sessions[0] if sessions else {}
        total_visitors = session_data.get("total_visitors") or 0
        returning_visitors = session_data.get("returning_visitors") or 0

        return Overview(
            total_visitors=total_visitors,
            unique_visitors=session_data.get("unique_visitors") or 0,
            total_sessions=(active[0].get("total_sessions") or 0) if active else 0,
            total_page_views=(views[0].get("total_page_views") or 0) if views else 0,
            returning_visitors=returning_visitors,
            new_visitors=total_visitors - returning_visitors,
            avg_session_duration=round(session_data.get("avg_duration") or 0, 1),
            bounce_rate=round(
                session_bounce_rate(session_data.get("bounced_sessions") or 0, total_visitors), 1
            ),
        )

    def _build_page_filter_sql(self, page: str | None) -> tuple[str, list]:
        """Optional page filter for page_views queries (parameterised)."""
        if not page:
            return "", []
        return "AND page = ?", [page]

    # =========================================================================
    # PAGES & EVENTS
    # =========================================================================

    async def get_top_pages(
        self, since: datetime, limit: int = 10, page: str | None = None
    ) -> list[PageStats]:
        """Pages by view count, with distinct visitors."""
        page_sql, page_params = self._build_page_filter_sql(page)
        results = await self._query(
            f"""
            SELECT
                page,
                COUNT(*) as views,
                COUNT(DISTINCT visitor_id) as unique_visitors
            FROM page_views
            WHERE timestamp >= ? {page_sql}
            GROUP BY page
            ORDER BY views DESC
            LIMIT ?
            """,
            [to_db_timestamp(since)] + page_params + [limit],
        )
        return [
            PageStats(page=r["page"], views=r["views"], unique_visitors=r["unique_visitors"])
            for r in results
        ]

    async def get_top_events(self, since: datetime, limit: int = 10) -> list[EventCount]:
        results = await self._query(
            """
            SELECT event_category, event_action, COUNT(*) as count
            FROM events
            WHERE timestamp >= ?
            GROUP BY event_category, event_action
            ORDER BY count DESC
            LIMIT ?
            """,
            [to_db_timestamp(since), limit],
        )
        return [
            EventCount(category=r["event_category"], action=r["event_action"], count=r["count"])
            for r in results
        ]

    # =========================================================================
    # BREAKDOWNS
    # =========================================================================

    async def get_breakdown(
        self, column: str, since: datetime, limit: int | None = 10
    ) -> list[BreakdownItem]:
        """Count sessions started since `since`, grouped by a session column."""
        if column not in BREAKDOWN_COLUMNS:
            raise ValueError(f"Cannot break down by {column!r}")

        limit_sql = "LIMIT ?" if limit is not None else ""
        params: list = [BREAKDOWN_COLUMNS[column], to_db_timestamp(since)]
        if limit is not None:
            params.append(limit)

        results = await self._query(
            f"""
            SELECT COALESCE({column}, ?) as name, COUNT(*) as count
            FROM sessions
            WHERE first_visit >= ?
            GROUP BY name
            ORDER BY count DESC
            {limit_sql}
            """,
            params,
        )
        return [BreakdownItem(name=r["name"], count=r["count"]) for r in results]

    async def get_device_types(self, since: datetime) -> list[BreakdownItem]:
        return await self.get_breakdown("device_type", since, limit=None)

    async def get_browsers(self, since: datetime, limit: int = 10) -> list[BreakdownItem]:
        return await self.get_breakdown("browser", since, limit)

    async def get_operating_systems(self, since: datetime, limit: int = 10) -> list[BreakdownItem]:
        return await self.get_breakdown("os", since, limit)

    async def get_countries(self, since: datetime, limit: int = 10) -> list[BreakdownItem]:
        return await self.get_breakdown("country", since, limit)

    # =========================================================================
    # TIME SERIES
    # =========================================================================

    async def get_daily_visitors(self, since: datetime) -> list[DailyVisitors]:
        """Sessions and distinct visitors per calendar day (UTC) of first visit."""
        results = await self._query(
            """
            SELECT
                substr(first_visit, 1, 10) as day,
                COUNT(*) as visitors,
                COUNT(DISTINCT visitor_id) as unique_visitors
            FROM sessions
            WHERE first_visit >= ?
            GROUP BY day
            ORDER BY day ASC
            """,
            [to_db_timestamp(since)],
        )
        return [
            DailyVisitors(date=r["day"], visitors=r["visitors"], unique_visitors=r["unique_visitors"])
            for r in results
        ]

    # =========================================================================
    # STATS DOCUMENT
    # =========================================================================

    async def get_stats(self, period: str | None = None, page: str | None = None) -> StatsResponse:
        """Assemble the full stats document for a preset period."""
        period = resolve_period(period)
        now = self._now()
        since = period_start(period, now)

        (
            overview, top_pages, device_types, browsers,
            operating_systems, countries, daily_visitors, top_events,
        ) = await asyncio.gather(
            self.get_overview(since, page),
            self.get_top_pages(since, 10, page),
            self.get_device_types(since),
            self.get_browsers(since),
            self.get_operating_systems(since),
            self.get_countries(since),
            self.get_daily_visitors(since),
            self.get_top_events(since),
        )

        return StatsResponse(
            overview=overview,
            top_pages=top_pages,
            device_types=device_types,
            browsers=browsers,
            operating_systems=operating_systems,
            countries=countries,
            daily_visitors=daily_visitors,
            top_events=top_events,
            period=period,
            date_range=DateRange(start=since, end=now),
        )

    # =========================================================================
    # VISITORS
    # =========================================================================

    def _build_visitor_filter_sql(
        self,
        date_from: datetime | None,
        date_to: datetime | None,
        country: str | None,
        device: str | None,
        is_returning: bool | None,
    ) -> tuple[str, list]:
        clauses = []
        params: list = []

        if date_from:
            clauses.append("AND s.first_visit >= ?")
            params.append(to_db_timestamp(date_from))
        if date_to:
            clauses.append("AND s.first_visit <= ?")
            params.append(to_db_timestamp(date_to))
        # Substring, case-insensitive (LIKE is case-insensitive for ASCII)
        if country:
            clauses.append("AND s.country LIKE ?")
            params.append(f"%{country}%")
        if device:
            clauses.append("AND s.device_type LIKE ?")
            params.append(f"%{device}%")
        if is_returning is not None:
            clauses.append("AND s.is_returning_visitor = ?")
            params.append(int(is_returning))

        return " ".join(clauses), params

    async def list_visitors(
        self,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "lastActivity",
        sort_order: str = "desc",
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        country: str | None = None,
        device: str | None = None,
        is_returning: bool | None = None,
    ) -> VisitorListData:
        """One row per session, paginated, with interaction counts."""
        if sort_by not in VISITOR_SORT_COLUMNS:
            raise ValidationError(f"Unsupported sortBy: {sort_by}", ["sortBy"])
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"Unsupported sortOrder: {sort_order}", ["sortOrder"])
        page = max(page, 1)
        limit = max(limit, 1)

        filter_sql, filter_params = self._build_visitor_filter_sql(
            date_from, date_to, country, device, is_returning
        )
        direction = "ASC" if sort_order == "asc" else "DESC"

        rows = await self._query(
            f"""
            SELECT
                s.*,
                (SELECT COUNT(*) FROM events e WHERE e.visitor_id = s.visitor_id) as total_interactions,
                (SELECT MAX(e.timestamp) FROM events e WHERE e.visitor_id = s.visitor_id) as last_interaction
            FROM sessions s
            WHERE 1 = 1 {filter_sql}
            ORDER BY {VISITOR_SORT_COLUMNS[sort_by]} {direction}, s.id {direction}
            LIMIT ? OFFSET ?
            """,
            filter_params + [limit, (page - 1) * limit],
        )
        count = await self._query(
            f"SELECT COUNT(*) as total FROM sessions s WHERE 1 = 1 {filter_sql}",
            filter_params,
        )
        total_count = (count[0].get("total") or 0) if count else 0

        return VisitorListData(
            visitors=[self._visitor_item(row) for row in rows],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total_count / limit),
                total_count=total_count,
                has_next=page * limit < total_count,
                has_prev=page > 1,
            ),
            filters=VisitorFilters(
                sort_by=sort_by,
                sort_order=sort_order,
                date_from=date_from.isoformat() if date_from else None,
                date_to=date_to.isoformat() if date_to else None,
                country=country,
                device=device,
                is_returning=is_returning,
            ),
        )

    @staticmethod
    def _visitor_item(row: dict) -> VisitorListItem:
        total_duration = row.get("total_duration") or 0
        return VisitorListItem(
            visitor_id=row["visitor_id"],
            session_id=row["session_id"],
            location=VisitorLocation(
                country=row.get("country") or "Unknown",
                city=row.get("city") or "Unknown",
            ),
            device=VisitorDevice(
                type=row.get("device_type") or "Unknown",
                browser=row.get("browser") or "Unknown",
                os=row.get("os") or "Unknown",
                is_mobile=bool(row.get("is_mobile")),
            ),
            first_visit=row["first_visit"],
            last_activity=row["last_activity"],
            page_views=row.get("page_views") or 0,
            total_duration=total_duration,
            is_returning_visitor=bool(row.get("is_returning_visitor")),
            source=row.get("source") or "Direct",
            medium=row.get("medium") or "None",
            bounced=bool(row.get("bounced")),
            session_duration=int(total_duration / 60000 + 0.5),
            total_interactions=row.get("total_interactions") or 0,
            last_interaction=row.get("last_interaction"),
        )

    async def get_visitor_detail(
        self,
        visitor_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> VisitorDetail:
        """Everything recorded for one visitor, plus rollups.

        The optional range applies to record timestamps; sessions are always
        returned in full.

        Raises:
            NotFoundError: If nothing at all is recorded for the visitor
        """
        time_sql = ""
        time_params: list = []
        if start:
            time_sql += " AND timestamp >= ?"
            time_params.append(to_db_timestamp(start))
        if end:
            time_sql += " AND timestamp <= ?"
            time_params.append(to_db_timestamp(end))

        def records(table: str):
            return self._query(
                f"SELECT * FROM {table} WHERE visitor_id = ?{time_sql} ORDER BY timestamp DESC",
                [visitor_id] + time_params,
            )

        session_rows, view_rows, event_rows, form_rows, error_rows, metric_rows = await asyncio.gather(
            self._query(
                "SELECT * FROM sessions WHERE visitor_id = ? ORDER BY first_visit DESC",
                [visitor_id],
            ),
            records("page_views"),
            records("events"),
            records("form_submissions"),
            records("errors"),
            records("performance_metrics"),
        )

        if not any((session_rows, view_rows, event_rows, form_rows, error_rows, metric_rows)):
            raise NotFoundError(f"No data recorded for visitor {visitor_id}")

        sessions = [VisitorSession.from_row(row) for row in session_rows]
        page_views = [PageView.from_row(row) for row in view_rows]
        events = [Event.from_row(row) for row in event_rows]
        form_submissions = [FormSubmission.from_row(row) for row in form_rows]
        errors = [ErrorEvent.from_row(row) for row in error_rows]
        metrics = [PerformanceMetric.from_row(row) for row in metric_rows]

        return VisitorDetail(
            visitor_id=visitor_id,
            stats=summarize_visitor(sessions, page_views, events, form_submissions, errors),
            sessions=sessions,
            page_views=page_views,
            events=events,
            form_submissions=form_submissions,
            errors=errors,
            performance_metrics=metrics,
            analytics=VisitorAnalytics(
                page_stats=page_engagement(page_views),
                event_stats=event_action_stats(events),
                performance_stats=performance_stats(metrics),
            ),
        )
