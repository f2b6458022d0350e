"""
In-memory rollups for the per-visitor detail view.

Two different "bounce" measures live here and are kept apart on purpose:
session-level (a session with exactly one page view) and page-level (a page
visit shorter than PAGE_BOUNCE_THRESHOLD_MS).
"""
from collections.abc import Iterable

from .models import (
    ErrorEvent,
    Event,
    EventActionStats,
    FormSubmission,
    PageEngagement,
    PageView,
    PerformanceMetric,
    PerformanceSample,
    PerformanceStats,
    VisitorSession,
    VisitorSummary,
)

PAGE_BOUNCE_THRESHOLD_MS = 30_000


def percentage(part: float, whole: float) -> float:
    """part / whole * 100, or 0 when whole is 0."""
    if not whole:
        return 0.0
    return part / whole * 100


def session_bounce_rate(bounced_sessions: int, total_sessions: int) -> float:
    """Share of sessions with a single page view, as a percentage."""
    return percentage(bounced_sessions, total_sessions)


def _distinct(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def summarize_visitor(
    sessions: list[VisitorSession],
    page_views: list[PageView],
    events: list[Event],
    form_submissions: list[FormSubmission],
    errors: list[ErrorEvent],
) -> VisitorSummary:
    total_duration = sum(session.total_duration for session in sessions)
    bounced = sum(1 for session in sessions if session.page_views == 1)
    return VisitorSummary(
        total_sessions=len(sessions),
        total_page_views=len(page_views),
        total_events=len(events),
        total_form_submissions=len(form_submissions),
        total_errors=len(errors),
        total_duration=total_duration,
        average_session_duration=total_duration / len(sessions) if sessions else 0,
        bounce_rate=session_bounce_rate(bounced, len(sessions)),
        first_visit=min((s.first_visit for s in sessions), default=None),
        last_visit=max((s.last_activity for s in sessions), default=None),
        is_returning_visitor=any(s.is_returning_visitor for s in sessions),
        countries=_distinct(s.location.country for s in sessions),
        devices=_distinct(s.device.type for s in sessions),
        browsers=_distinct(s.device.browser for s in sessions),
        operating_systems=_distinct(s.device.os for s in sessions),
        sources=_distinct(s.source for s in sessions),
        campaigns=_distinct(s.campaign for s in sessions),
    )


def page_engagement(page_views: Iterable[PageView]) -> list[PageEngagement]:
    """Views, durations, scroll depth and page-level bounces per page."""
    stats: dict[str, PageEngagement] = {}
    for view in page_views:
        entry = stats.setdefault(view.page, PageEngagement(page=view.page))
        duration = view.duration or 0
        entry.views += 1
        entry.total_duration += duration
        entry.max_scroll_depth = max(entry.max_scroll_depth, view.scroll_depth or 0)
        if duration < PAGE_BOUNCE_THRESHOLD_MS:
            entry.page_bounces += 1

    for entry in stats.values():
        entry.average_duration = entry.total_duration / entry.views if entry.views else 0
        entry.page_bounce_rate = percentage(entry.page_bounces, entry.views)
    return list(stats.values())


def event_action_stats(events: Iterable[Event]) -> list[EventActionStats]:
    """Count, distinct labels and summed value per (category, action)."""
    stats: dict[tuple[str, str], EventActionStats] = {}
    for event in events:
        key = (event.event_category, event.event_action)
        entry = stats.setdefault(
            key, EventActionStats(category=event.event_category, action=event.event_action)
        )
        entry.count += 1
        if event.event_label and event.event_label not in entry.labels:
            entry.labels.append(event.event_label)
        entry.total_value += event.event_value or 0
    return list(stats.values())


def performance_stats(metrics: Iterable[PerformanceMetric]) -> list[PerformanceStats]:
    """Count, average, min, max and newest-first history per metric name."""
    stats: dict[str, PerformanceStats] = {}
    for metric in metrics:
        entry = stats.get(metric.metric_name)
        if entry is None:
            entry = PerformanceStats(
                metric_name=metric.metric_name,
                metric_type=metric.metric_type,
                min_value=metric.value,
                max_value=metric.value,
            )
            stats[metric.metric_name] = entry
        entry.count += 1
        entry.total_value += metric.value
        entry.min_value = min(entry.min_value, metric.value)
        entry.max_value = max(entry.max_value, metric.value)
        entry.values.append(
            PerformanceSample(value=metric.value, timestamp=metric.timestamp, page=metric.page)
        )

    for entry in stats.values():
        entry.average_value = entry.total_value / entry.count if entry.count else 0
        entry.values.sort(key=lambda sample: sample.timestamp, reverse=True)
    return list(stats.values())
