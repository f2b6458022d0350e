"""Tests for the ingestion endpoints."""

import asyncio
import json

from fastapi.testclient import TestClient

from site_analytics import Analytics
from site_analytics.app import create_app
from site_analytics.config import AnalyticsConfig
from site_analytics.core.database import SQLiteDatabase
from site_analytics.errors import StorageError
from site_analytics.geo import LocationInfo

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
API = "/api/analytics"


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeGeolocator:
    async def locate(self, ip_address: str) -> LocationInfo:
        return LocationInfo(country="United States", region="California", city="San Jose")


class FailingDatabase(SQLiteDatabase):
    """Rejects every write after the schema exists."""

    async def query(self, sql, params=None):
        if sql.lstrip().upper().startswith(("INSERT", "UPDATE")):
            raise StorageError("disk I/O error")
        return await super().query(sql, params)


def _client(database=None):
    db = database or SQLiteDatabase()
    analytics = Analytics(AnalyticsConfig(site_name="test.dev"), database=db, geolocator=FakeGeolocator())
    return TestClient(create_app(analytics=analytics)), db


def _browser_headers(ip: str = "203.0.113.7") -> dict:
    return {
        "User-Agent": CHROME_WINDOWS,
        "X-Forwarded-For": ip,
        "Accept-Language": "en-US,en;q=0.9",
    }


def _start_session(client, ip: str = "203.0.113.7") -> dict:
    response = client.post(
        f"{API}/session",
        json={
            "screen": {"width": 1920, "height": 1080, "colorDepth": 24},
            "language": "en-US",
            "timezone": "America/Los_Angeles",
            "referrer": "",
            "currentUrl": "https://test.dev/?utm_source=hn",
        },
        headers=_browser_headers(ip),
    )
    assert response.status_code == 200
    return response.json()


class TestSessionEndpoint:
    """Test POST /session."""

    def test_creates_session(self):
        client, db = _client()

        data = _start_session(client)

        assert data["success"] is True
        assert data["sessionId"]
        assert data["visitorId"]
        assert data["isReturningVisitor"] is False
        rows = run_async(db.query("SELECT * FROM sessions"))
        assert rows[0]["ip_address"] == "203.0.113.7"
        assert rows[0]["country"] == "United States"
        assert rows[0]["source"] == "hn"

    def test_repeat_within_window_returns_same_session(self):
        client, _ = _client()

        first = _start_session(client)
        second = _start_session(client)

        assert second["sessionId"] == first["sessionId"]
        assert second["visitorId"] == first["visitorId"]
        assert second["isReturningVisitor"] is True

    def test_malformed_json_is_400(self):
        client, db = _client()

        response = client.post(f"{API}/session", content=b"{not json", headers=_browser_headers())

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert run_async(db.query("SELECT id FROM sessions")) == []

    def test_empty_body_is_accepted(self):
        client, _ = _client()
        response = client.post(f"{API}/session", headers=_browser_headers())
        assert response.status_code == 200

    def test_storage_failure_is_500(self):
        client, _ = _client(FailingDatabase())

        response = client.post(f"{API}/session", json={}, headers=_browser_headers())

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}


class TestPageViewEndpoint:
    """Test POST /pageview."""

    def test_records_page_view_and_updates_session(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/pageview", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "page": "/about",
            "title": "About",
            "duration": 45000,
        })

        assert response.status_code == 200
        assert response.json() == {"success": True}
        views = run_async(db.query("SELECT * FROM page_views"))
        assert len(views) == 1
        assert views[0]["page"] == "/about"
        assert views[0]["country"] == "United States"
        assert views[0]["browser"] == "Chrome"
        sessions = run_async(db.query("SELECT page_views, total_duration, exit_page FROM sessions"))
        assert sessions[0] == {"page_views": 1, "total_duration": 45000, "exit_page": "/about"}

    def test_missing_required_field_is_400(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/pageview", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
        })

        assert response.status_code == 400
        assert "page" in response.json()["fields"]
        assert run_async(db.query("SELECT id FROM page_views")) == []

    def test_negative_duration_is_400(self):
        client, _ = _client()
        response = client.post(f"{API}/pageview", json={
            "sessionId": "s", "visitorId": "v", "page": "/", "duration": -5,
        })
        assert response.status_code == 400

    def test_oversized_duration_is_400(self):
        """Durations past the storable range are rejected before reaching storage."""
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/pageview", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "page": "/",
            "duration": 10**20,
        })

        assert response.status_code == 400
        assert response.json()["fields"] == ["duration"]
        assert run_async(db.query("SELECT id FROM page_views")) == []
        assert run_async(db.query("SELECT total_duration FROM sessions"))[0]["total_duration"] == 0

    def test_unknown_session_still_stores_row(self):
        """Rows for unknown sessions are kept; the aggregate update is skipped."""
        client, db = _client()

        response = client.post(f"{API}/pageview", json={
            "sessionId": "does-not-exist", "visitorId": "v1", "page": "/",
        })

        assert response.status_code == 200
        views = run_async(db.query("SELECT * FROM page_views"))
        assert len(views) == 1
        assert views[0]["country"] is None

    def test_beacon_text_plain_body_is_accepted(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(
            f"{API}/pageview",
            content=json.dumps({
                "sessionId": session["sessionId"],
                "visitorId": session["visitorId"],
                "page": "/closing",
                "duration": 1500,
            }),
            headers={"Content-Type": "text/plain;charset=UTF-8"},
        )

        assert response.status_code == 200
        assert run_async(db.query("SELECT total_duration FROM sessions"))[0]["total_duration"] == 1500

    def test_storage_failure_is_500(self):
        client, _ = _client(FailingDatabase())
        response = client.post(f"{API}/pageview", json={"sessionId": "s", "visitorId": "v", "page": "/"})
        assert response.status_code == 500


class TestEventEndpoint:
    """Test POST /event."""

    def _event(self, session: dict, **overrides) -> dict:
        body = {
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "eventType": "interaction",
            "eventCategory": "button",
            "eventAction": "click",
            "eventLabel": "Sign up",
            "page": "/",
            "metadata": {"id": "cta"},
        }
        body.update(overrides)
        return {k: v for k, v in body.items() if v is not None}

    def test_records_event_without_counting_page_view(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/event", json=self._event(session))

        assert response.status_code == 200
        events = run_async(db.query("SELECT * FROM events"))
        assert len(events) == 1
        assert json.loads(events[0]["metadata"]) == {"id": "cta"}
        assert events[0]["device_type"] == "desktop"
        assert run_async(db.query("SELECT page_views FROM sessions"))[0]["page_views"] == 0

    def test_missing_event_action_is_400_and_stores_nothing(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/event", json=self._event(session, eventAction=None))

        assert response.status_code == 400
        assert response.json()["fields"] == ["eventAction"]
        assert run_async(db.query("SELECT id FROM events")) == []

    def test_empty_required_string_is_400(self):
        client, _ = _client()
        session = _start_session(client)
        response = client.post(f"{API}/event", json=self._event(session, eventCategory=""))
        assert response.status_code == 400

    def test_non_json_infinity_literal_is_400(self):
        client, db = _client()
        session = _start_session(client)
        body = json.dumps(self._event(session)).replace('"eventLabel": "Sign up"', '"eventValue": Infinity')

        response = client.post(
            f"{API}/event", content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert run_async(db.query("SELECT id FROM events")) == []
        assert client.get(f"{API}/visitors/{session['visitorId']}").status_code == 200

    def test_overflowing_number_is_400(self):
        """1e999 decodes to infinity, which is not a storable value."""
        client, db = _client()
        session = _start_session(client)
        body = json.dumps(self._event(session)).replace('"eventLabel": "Sign up"', '"eventValue": 1e999')

        response = client.post(
            f"{API}/event", content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["fields"] == ["eventValue"]
        assert run_async(db.query("SELECT id FROM events")) == []

    def test_client_timestamp_is_kept(self):
        client, db = _client()
        session = _start_session(client)

        client.post(f"{API}/event", json=self._event(session, timestamp="2026-01-02T03:04:05Z"))

        events = run_async(db.query("SELECT timestamp FROM events"))
        assert events[0]["timestamp"] == "2026-01-02T03:04:05.000000+00:00"


class TestOtherRecordEndpoints:
    """Test POST /form, /error and /performance."""

    def test_form_submission(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/form", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "formId": "contact",
            "formName": "Contact",
            "success": True,
            "fields": ["email", "message"],
            "completionTime": 5400,
        })

        assert response.status_code == 200
        rows = run_async(db.query("SELECT * FROM form_submissions"))
        assert rows[0]["success"] == 1
        assert json.loads(rows[0]["fields"]) == ["email", "message"]

    def test_error_defaults_to_medium_severity(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/error", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "errorType": "TypeError",
            "errorMessage": "x is undefined",
        })

        assert response.status_code == 200
        assert run_async(db.query("SELECT severity FROM errors"))[0]["severity"] == "medium"

    def test_error_rejects_unknown_severity(self):
        client, _ = _client()
        response = client.post(f"{API}/error", json={
            "sessionId": "s", "visitorId": "v", "errorType": "E", "errorMessage": "m", "severity": "fatal",
        })
        assert response.status_code == 400

    def test_performance_metric(self):
        client, db = _client()
        session = _start_session(client)

        response = client.post(f"{API}/performance", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "metricType": "web-vitals",
            "metricName": "LCP",
            "value": 1830.5,
            "additionalData": {"rating": "good"},
        })

        assert response.status_code == 200
        rows = run_async(db.query("SELECT * FROM performance_metrics"))
        assert rows[0]["value"] == 1830.5
        assert rows[0]["browser"] == "Chrome"

    def test_form_completion_time_over_bound_is_400(self):
        client, _ = _client()
        response = client.post(f"{API}/form", json={
            "sessionId": "s", "visitorId": "v", "formId": "f", "formName": "F",
            "success": True, "completionTime": 2**63,
        })
        assert response.status_code == 400
        assert response.json()["fields"] == ["completionTime"]

    def test_performance_rejects_nan(self):
        client, db = _client()
        response = client.post(
            f"{API}/performance",
            content='{"sessionId": "s", "visitorId": "v", "metricType": "custom", "metricName": "x", "value": NaN}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert run_async(db.query("SELECT id FROM performance_metrics")) == []

    def test_performance_rejects_unknown_type(self):
        client, _ = _client()
        response = client.post(f"{API}/performance", json={
            "sessionId": "s", "visitorId": "v", "metricType": "cpu", "metricName": "x", "value": 1,
        })
        assert response.status_code == 400


class TestTrackerScript:
    def test_serves_javascript_bound_to_prefix(self):
        client, _ = _client()

        response = client.get(f"{API}/tracker.js")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/javascript")
        assert 'var api="/api/analytics"' in response.text
        assert "sendBeacon" in response.text


class TestDesktopChromeScenario:
    """End to end: session, page view, then the read side."""

    def test_chrome_windows_visit(self):
        client, _ = _client()
        session = _start_session(client)

        client.post(f"{API}/pageview", json={
            "sessionId": session["sessionId"],
            "visitorId": session["visitorId"],
            "page": "/about",
            "duration": 45000,
        })

        stats = client.get(f"{API}/stats", params={"period": "1d"}).json()
        assert stats["overview"]["totalPageViews"] >= 1

        detail = client.get(f"{API}/visitors/{session['visitorId']}").json()
        visited = detail["sessions"][0]
        assert visited["device"]["type"] == "desktop"
        assert visited["device"]["browser"] == "Chrome"
        assert visited["device"]["os"] == "Windows"
        assert visited["device"]["isMobile"] is False
        assert visited["totalDuration"] >= 45000
