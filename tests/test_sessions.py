"""Tests for session resolution and session aggregates."""

import asyncio
from datetime import datetime, timedelta, timezone

from site_analytics.core.database import SQLiteDatabase
from site_analytics.core.models import ScreenInfo, SessionInitRequest
from site_analytics.core.sessions import RequestContext, SessionStore
from site_analytics.geo import LocationInfo

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeGeolocator:
    def __init__(self, location: LocationInfo | None = None):
        self.location = location or LocationInfo(country="Netherlands", region="North Holland", city="Amsterdam")
        self.calls: list[str] = []

    async def locate(self, ip_address: str) -> LocationInfo:
        self.calls.append(ip_address)
        return self.location


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _store():
    db = SQLiteDatabase()
    clock = FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    return SessionStore(db, FakeGeolocator(), clock=clock), db, clock


def _context(ip: str = "203.0.113.7", user_agent: str = CHROME_WINDOWS) -> RequestContext:
    return RequestContext(ip_address=ip, user_agent=user_agent, accept_language="en-US,en;q=0.9", accept_encoding="gzip")


class TestResolveSession:
    """Test SessionStore.resolve_session."""

    def test_first_session_is_new_visitor(self):
        store, db, _ = _store()

        result = run_async(store.resolve_session(_context()))

        assert result.is_new_session
        assert not result.is_returning_visitor
        assert not result.session.is_returning_visitor
        rows = run_async(db.query("SELECT * FROM sessions"))
        assert len(rows) == 1
        assert rows[0]["session_id"] == result.session.session_id

    def test_populates_device_location_and_attribution(self):
        store, _, _ = _store()
        payload = SessionInitRequest(
            screen=ScreenInfo(width=1920, height=1080, color_depth=24),
            timezone="Europe/Amsterdam",
            referrer="https://news.example.org/",
            current_url="https://example.dev/?utm_source=newsletter&utm_campaign=launch",
        )

        session = run_async(store.resolve_session(_context(), payload)).session

        assert session.device.type == "desktop"
        assert session.device.browser == "Chrome"
        assert session.device.os == "Windows"
        assert session.location.country == "Netherlands"
        assert session.screen.width == 1920
        assert session.timezone == "Europe/Amsterdam"
        assert session.language == "en-US"  # first Accept-Language entry
        assert session.referrer == "https://news.example.org/"
        assert session.source == "newsletter"
        assert session.campaign == "launch"
        assert session.page_views == 0
        assert session.total_duration == 0

    def test_defaults_when_payload_is_empty(self):
        store, _, _ = _store()
        context = RequestContext(ip_address="203.0.113.7", user_agent=CHROME_WINDOWS)

        session = run_async(store.resolve_session(context)).session

        assert session.language == "en"
        assert session.timezone == "UTC"

    def test_same_device_within_window_continues_session(self):
        """Repeating session init inside the window returns the same session."""
        store, db, clock = _store()

        first = run_async(store.resolve_session(_context()))
        clock.advance(minutes=10)
        second = run_async(store.resolve_session(_context(ip="203.0.113.99")))

        assert second.session.session_id == first.session.session_id
        assert second.session.visitor_id == first.session.visitor_id
        assert not second.is_new_session
        assert second.is_returning_visitor
        rows = run_async(db.query("SELECT last_activity FROM sessions"))
        assert len(rows) == 1
        assert rows[0]["last_activity"].startswith("2026-03-01T12:10:00")

    def test_sliding_window_is_measured_from_last_activity(self):
        store, db, clock = _store()

        first = run_async(store.resolve_session(_context()))
        clock.advance(minutes=25)
        run_async(store.resolve_session(_context()))
        clock.advance(minutes=25)
        third = run_async(store.resolve_session(_context()))

        assert third.session.session_id == first.session.session_id
        assert len(run_async(db.query("SELECT id FROM sessions"))) == 1

    def test_expired_window_starts_returning_session(self):
        """After 30 minutes idle a new session keeps the visitor id."""
        store, db, clock = _store()

        first = run_async(store.resolve_session(_context()))
        clock.advance(minutes=31)
        second = run_async(store.resolve_session(_context()))

        assert second.is_new_session
        assert second.is_returning_visitor
        assert second.session.is_returning_visitor
        assert second.session.session_id != first.session.session_id
        assert second.session.visitor_id == first.session.visitor_id
        assert len(run_async(db.query("SELECT id FROM sessions"))) == 2

    def test_different_device_is_different_visitor(self):
        store, _, _ = _store()

        first = run_async(store.resolve_session(_context()))
        other = run_async(store.resolve_session(_context(ip="198.51.100.7")))

        assert other.session.visitor_id != first.session.visitor_id
        assert not other.is_returning_visitor

    def test_custom_timeout(self):
        db = SQLiteDatabase()
        clock = FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
        store = SessionStore(db, FakeGeolocator(), session_timeout=timedelta(minutes=5), clock=clock)

        first = run_async(store.resolve_session(_context()))
        clock.advance(minutes=6)
        second = run_async(store.resolve_session(_context()))

        assert second.session.session_id != first.session.session_id


class TestSessionAggregates:
    """Test record_page_view and record_activity."""

    def test_page_view_increments_counters(self):
        store, _, clock = _store()
        session = run_async(store.resolve_session(_context())).session

        clock.advance(seconds=45)
        assert run_async(store.record_page_view(session.session_id, "/about", 45000))
        updated = run_async(store.get_session(session.session_id))

        assert updated.page_views == 1
        assert updated.total_duration == 45000
        assert updated.exit_page == "/about"
        assert updated.bounced
        assert updated.last_activity == clock.now

    def test_counters_are_cumulative(self):
        store, _, _ = _store()
        session = run_async(store.resolve_session(_context())).session

        run_async(store.record_page_view(session.session_id, "/", None))
        run_async(store.record_page_view(session.session_id, "/pricing", 1200))
        run_async(store.record_page_view(session.session_id, "/signup", 800))
        updated = run_async(store.get_session(session.session_id))

        assert updated.page_views == 3
        assert updated.total_duration == 2000
        assert updated.exit_page == "/signup"
        assert not updated.bounced

    def test_concurrent_page_views_are_not_lost(self):
        """Increments are single statements, so none are lost under concurrency."""
        store, _, _ = _store()
        session = run_async(store.resolve_session(_context())).session

        async def burst():
            await asyncio.gather(*[
                store.record_page_view(session.session_id, f"/p{i}", 100) for i in range(20)
            ])

        run_async(burst())
        updated = run_async(store.get_session(session.session_id))

        assert updated.page_views == 20
        assert updated.total_duration == 2000

    def test_unknown_session_is_a_soft_no_op(self):
        store, db, _ = _store()

        assert run_async(store.record_page_view("missing", "/", 100)) is False
        assert run_async(store.record_activity("missing")) is False
        assert run_async(db.query("SELECT id FROM sessions")) == []

    def test_activity_bumps_last_activity_only(self):
        store, _, clock = _store()
        session = run_async(store.resolve_session(_context())).session

        clock.advance(minutes=3)
        assert run_async(store.record_activity(session.session_id))
        updated = run_async(store.get_session(session.session_id))

        assert updated.page_views == 0
        assert updated.last_activity == clock.now

    def test_last_activity_never_moves_backwards(self):
        store, _, clock = _store()
        session = run_async(store.resolve_session(_context())).session

        clock.advance(minutes=5)
        run_async(store.record_activity(session.session_id))
        clock.advance(minutes=-4)
        run_async(store.record_activity(session.session_id))
        updated = run_async(store.get_session(session.session_id))

        assert updated.last_activity == datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)

    def test_get_session_missing(self):
        store, _, _ = _store()
        assert run_async(store.get_session("missing")) is None
