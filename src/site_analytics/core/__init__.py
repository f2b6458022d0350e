"""
Core analytics module.

Contains storage, the data models, session resolution and the read-side client.
"""

from .client import AnalyticsClient
from .database import D1Database, Database, SQLiteDatabase
from .models import (
    BreakdownItem,
    DailyVisitors,
    DateRange,
    ErrorEvent,
    Event,
    FormSubmission,
    Overview,
    PageStats,
    PageView,
    PerformanceMetric,
    StatsResponse,
    VisitorDetail,
    VisitorListData,
    VisitorSession,
)
from .records import RecordWriter
from .sessions import RequestContext, SessionResolution, SessionStore

__all__ = [
    "Database", "D1Database", "SQLiteDatabase",
    "VisitorSession", "PageView", "Event", "FormSubmission", "ErrorEvent", "PerformanceMetric",
    "Overview", "PageStats", "BreakdownItem", "DailyVisitors", "DateRange", "StatsResponse",
    "VisitorListData", "VisitorDetail",
    "RequestContext", "SessionResolution", "SessionStore", "RecordWriter",
    "AnalyticsClient",
]
