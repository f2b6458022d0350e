"""
Visitor identity resolution and session aggregates.

Sessions are keyed purely by device fingerprint. A fingerprint seen within
the inactivity window continues its latest session; otherwise a new session
is created, reusing the visitor id of any earlier session for the same
fingerprint. Client-supplied identifiers never select a session.

The store is the only writer of last_activity, page_views and total_duration.
Each aggregate update is a single UPDATE statement so concurrent requests
for one session never lose increments.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..fingerprint import generate_device_fingerprint, generate_session_id, generate_visitor_id
from ..geo import IPGeolocator, LocationInfo
from ..user_agent import parse_user_agent
from ..utm import parse_utm
from .database import Database, to_db_timestamp, utcnow
from .models import SessionInitRequest, VisitorSession

logger = logging.getLogger(__name__)

SESSION_TIMEOUT = timedelta(minutes=30)


@dataclass(frozen=True)
class RequestContext:
    """Network and header metadata of an incoming request."""
    ip_address: str
    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""

    @property
    def fingerprint(self) -> str:
        return generate_device_fingerprint(
            self.user_agent, self.ip_address, self.accept_language, self.accept_encoding
        )


@dataclass(frozen=True)
class SessionResolution:
    session: VisitorSession
    is_new_session: bool
    is_returning_visitor: bool


class SessionStore:
    """Creates, continues and updates visitor sessions."""

    def __init__(
        self,
        db: Database,
        geolocator: IPGeolocator | None = None,
        session_timeout: timedelta = SESSION_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.geolocator = geolocator or IPGeolocator()
        self.session_timeout = session_timeout
        self._now = clock

    async def resolve_session(
        self,
        context: RequestContext,
        payload: SessionInitRequest | None = None,
    ) -> SessionResolution:
        """Continue the active session for this device or start a new one."""
        payload = payload or SessionInitRequest()
        fingerprint = context.fingerprint
        now = self._now()
        window_start = now - self.session_timeout

        active = await self.db.query(
            """
            SELECT * FROM sessions
            WHERE device_fingerprint = ? AND last_activity >= ?
            ORDER BY last_activity DESC
            LIMIT 1
            """,
            [fingerprint, to_db_timestamp(window_start)],
        )
        if active:
            rows = await self.db.query(
                """
                UPDATE sessions SET last_activity = MAX(last_activity, ?)
                WHERE session_id = ?
                RETURNING *
                """,
                [to_db_timestamp(now), active[0]["session_id"]],
            )
            session = VisitorSession.from_row(rows[0] if rows else active[0])
            logger.debug(f"Continuing session {session.session_id} for visitor {session.visitor_id}")
            return SessionResolution(session=session, is_new_session=False, is_returning_visitor=True)

        previous = await self.db.query(
            """
            SELECT visitor_id FROM sessions
            WHERE device_fingerprint = ?
            ORDER BY first_visit ASC
            LIMIT 1
            """,
            [fingerprint],
        )
        is_returning = bool(previous)
        visitor_id = previous[0]["visitor_id"] if previous else generate_visitor_id()

        session = await self._create_session(
            context, payload, fingerprint, visitor_id, is_returning, now
        )
        logger.info(
            f"Created session {session.session_id} for "
            f"{'returning' if is_returning else 'new'} visitor {visitor_id}"
        )
        return SessionResolution(session=session, is_new_session=True, is_returning_visitor=is_returning)

    async def _create_session(
        self,
        context: RequestContext,
        payload: SessionInitRequest,
        fingerprint: str,
        visitor_id: str,
        is_returning: bool,
        now: datetime,
    ) -> VisitorSession:
        device = parse_user_agent(context.user_agent)
        location: LocationInfo = await self.geolocator.locate(context.ip_address)
        utm = parse_utm(payload.current_url)
        screen = payload.screen

        language = payload.language or context.accept_language.split(",")[0].strip() or "en"
        row = {
            "session_id": generate_session_id(),
            "visitor_id": visitor_id,
            "device_fingerprint": fingerprint,
            "ip_address": context.ip_address,
            "user_agent": context.user_agent,
            "country": location.country,
            "region": location.region,
            "city": location.city,
            "location_timezone": location.timezone,
            "latitude": location.latitude,
            "longitude": location.longitude,
            "device_type": device.type,
            "browser": device.browser,
            "browser_version": device.browser_version,
            "os": device.os,
            "os_version": device.os_version,
            "is_mobile": int(device.is_mobile),
            "is_tablet": int(device.is_tablet),
            "is_desktop": int(device.is_desktop),
            "screen_width": screen.width if screen else None,
            "screen_height": screen.height if screen else None,
            "color_depth": screen.color_depth if screen else None,
            "language": language,
            "timezone": payload.timezone or "UTC",
            "referrer": payload.referrer or None,
            "first_visit": to_db_timestamp(now),
            "last_activity": to_db_timestamp(now),
            "page_views": 0,
            "total_duration": 0,
            "is_returning_visitor": int(is_returning),
            "source": utm.source,
            "medium": utm.medium,
            "campaign": utm.campaign,
            "term": utm.term,
            "content": utm.content,
            "exit_page": None,
            "bounced": 0,
        }
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        await self.db.query(
            f"INSERT INTO sessions ({columns}) VALUES ({placeholders})",
            list(row.values()),
        )
        return VisitorSession.from_row(row)

    async def get_session(self, session_id: str) -> VisitorSession | None:
        rows = await self.db.query(
            "SELECT * FROM sessions WHERE session_id = ?",
            [session_id],
        )
        return VisitorSession.from_row(rows[0]) if rows else None

    async def record_page_view(self, session_id: str, page: str, duration: int | None = None) -> bool:
        """Count a page view against its session.

        Returns False when no session matches; the caller keeps the page-view
        row and the aggregates are left alone.
        """
        rows = await self.db.query(
            """
            UPDATE sessions SET
                page_views = page_views + 1,
                total_duration = total_duration + ?,
                last_activity = MAX(last_activity, ?),
                exit_page = ?,
                bounced = CASE WHEN page_views + 1 = 1 THEN 1 ELSE 0 END
            WHERE session_id = ?
            RETURNING session_id
            """,
            [duration or 0, to_db_timestamp(self._now()), page, session_id],
        )
        if not rows:
            logger.info(f"Page view for unknown session {session_id}: stored without session update")
        return bool(rows)

    async def record_activity(self, session_id: str) -> bool:
        """Bump last_activity only (events, forms, errors, metrics)."""
        rows = await self.db.query(
            """
            UPDATE sessions SET last_activity = MAX(last_activity, ?)
            WHERE session_id = ?
            RETURNING session_id
            """,
            [to_db_timestamp(self._now()), session_id],
        )
        if not rows:
            logger.info(f"Activity for unknown session {session_id}: stored without session update")
        return bool(rows)
