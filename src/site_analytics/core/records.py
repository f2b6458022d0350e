"""
Writers for page-view, event, form, error and performance rows.

Each row carries a snapshot of its session's location and device. The
snapshot is copied inside the INSERT itself (LEFT JOIN on the session), so a
row for an unknown session is still stored, just without the snapshot.
"""
import json
from collections.abc import Callable
from datetime import datetime

from .database import Database, to_db_timestamp, utcnow
from .models import (
    ErrorEventRequest,
    EventRequest,
    FormSubmissionRequest,
    PageViewRequest,
    PerformanceMetricRequest,
)


def _dump_json(value) -> str | None:
    return json.dumps(value) if value is not None else None


class RecordWriter:
    """Insert-only access to the per-occurrence tables."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = clock

    def _timestamp(self, value: datetime | None) -> str:
        return to_db_timestamp(value or self._now())

    async def _insert(self, table: str, values: dict, snapshot: list[str], session_id: str) -> None:
        columns = list(values) + snapshot
        placeholders = ["?"] * len(values) + [f"s.{column}" for column in snapshot]
        await self.db.query(
            f"""
            INSERT INTO {table} ({", ".join(columns)})
            SELECT {", ".join(placeholders)}
            FROM (SELECT 1) AS one
            LEFT JOIN sessions AS s ON s.session_id = ?
            """,
            list(values.values()) + [session_id],
        )

    async def insert_page_view(self, payload: PageViewRequest) -> None:
        await self._insert(
            "page_views",
            {
                "session_id": payload.session_id,
                "visitor_id": payload.visitor_id,
                "page": payload.page,
                "title": payload.title,
                "referrer": payload.referrer,
                "timestamp": self._timestamp(payload.timestamp),
                "duration": payload.duration,
                "scroll_depth": payload.scroll_depth,
            },
            ["country", "region", "city", "device_type", "browser", "os", "is_mobile"],
            payload.session_id,
        )

    async def insert_event(self, payload: EventRequest) -> None:
        await self._insert(
            "events",
            {
                "session_id": payload.session_id,
                "visitor_id": payload.visitor_id,
                "event_type": payload.event_type,
                "event_category": payload.event_category,
                "event_action": payload.event_action,
                "event_label": payload.event_label,
                "event_value": payload.event_value,
                "page": payload.page,
                "timestamp": self._timestamp(payload.timestamp),
                "metadata": _dump_json(payload.metadata),
            },
            ["country", "device_type", "browser", "os"],
            payload.session_id,
        )

    async def insert_form_submission(self, payload: FormSubmissionRequest) -> None:
        await self._insert(
            "form_submissions",
            {
                "session_id": payload.session_id,
                "visitor_id": payload.visitor_id,
                "form_id": payload.form_id,
                "form_name": payload.form_name,
                "success": int(payload.success),
                "fields": _dump_json(payload.fields),
                "completion_time": payload.completion_time,
                "page": payload.page,
                "timestamp": self._timestamp(payload.timestamp),
            },
            ["country", "device_type", "browser", "os"],
            payload.session_id,
        )

    async def insert_error(self, payload: ErrorEventRequest) -> None:
        await self._insert(
            "errors",
            {
                "session_id": payload.session_id,
                "visitor_id": payload.visitor_id,
                "error_type": payload.error_type,
                "error_message": payload.error_message,
                "error_stack": payload.error_stack,
                "page": payload.page,
                "user_action": payload.user_action,
                "severity": payload.severity,
                "timestamp": self._timestamp(payload.timestamp),
            },
            ["country", "device_type", "browser", "os"],
            payload.session_id,
        )

    async def insert_performance_metric(self, payload: PerformanceMetricRequest) -> None:
        await self._insert(
            "performance_metrics",
            {
                "session_id": payload.session_id,
                "visitor_id": payload.visitor_id,
                "metric_type": payload.metric_type,
                "metric_name": payload.metric_name,
                "value": payload.value,
                "page": payload.page,
                "timestamp": self._timestamp(payload.timestamp),
                "additional_data": _dump_json(payload.additional_data),
            },
            ["device_type", "browser", "os"],
            payload.session_id,
        )
