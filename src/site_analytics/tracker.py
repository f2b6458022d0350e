"""
Client-side tracker.

A Tracker is constructed explicitly with its transport, beacon, page context
and clock, and owned by the application shell. `await tracker.init()`
bootstraps the session once. Until the bootstrap completes, tracking calls
are buffered in call order together with the time they were made; once the
session is known they are replayed in that order.

Deliveries go through a single worker draining a FIFO outbox, so records
reach the server in the order they were generated. A failed delivery is
logged and dropped; a failed bootstrap disables the tracker and is logged at
ERROR.

DOM integration is left to the host: it forwards navigation, click, scroll,
submit, focus, visibility and unload notifications to the on_* methods.
"""

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

SCROLL_MILESTONES = (25, 50, 75, 90, 100)
FORM_FIELD_TAGS = ("input", "textarea", "select")


# =============================================================================
# DELIVERY
# =============================================================================

class Transport(Protocol):
    """Asynchronous JSON POST to the ingestion API."""

    async def post(self, path: str, payload: dict) -> dict: ...


class Beacon(Protocol):
    """Fire-and-forget delivery that completes while the page tears down."""

    def send(self, path: str, payload: dict) -> bool: ...


class HttpTransport:
    """Transport over httpx.AsyncClient."""

    def __init__(
        self,
        api_endpoint: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.api_endpoint = api_endpoint.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def post(self, path: str, payload: dict) -> dict:
        response = await self._client.post(f"{self.api_endpoint}{path}", json=payload)
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpxBeacon:
    """Synchronous beacon: one blocking POST, errors logged and swallowed.

    The body is sent as text/plain, the content type navigator.sendBeacon uses.
    """

    def __init__(
        self,
        api_endpoint: str,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
    ):
        self.api_endpoint = api_endpoint.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, path: str, payload: dict) -> bool:
        try:
            response = self._client.post(
                f"{self.api_endpoint}{path}",
                content=json.dumps(payload),
                headers={"Content-Type": "text/plain;charset=UTF-8"},
            )
        except httpx.HTTPError as exc:
            logger.warning(f"Beacon to {path} failed: {exc}")
            return False
        return response.is_success


# =============================================================================
# PAGE & CONFIG
# =============================================================================

@dataclass
class PageContext:
    """What the host page knows about itself."""
    url: str
    path: str = "/"
    title: str = ""
    hostname: str = ""
    referrer: str = ""
    language: str = "en"
    timezone: str = "UTC"
    screen_width: int | None = None
    screen_height: int | None = None
    color_depth: int | None = None


@dataclass
class TrackerConfig:
    track_page_views: bool = True
    track_clicks: bool = True
    track_scrolling: bool = True
    track_forms: bool = True
    debug: bool = False


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    visitor_id: str
    is_returning_visitor: bool = False


def _now_ms() -> float:
    return time.time() * 1000


# =============================================================================
# CLICK CLASSIFICATION
# =============================================================================

class ClickCategory(str, Enum):
    """Click event categories."""
    LINK = "link"
    BUTTON = "button"
    FORM_ELEMENT = "form-element"
    GENERIC = "click"


@dataclass(frozen=True)
class ClickTarget:
    """
    The element a click (or focus) landed on.

    Attributes:
        tag: Element tag name, any case
        attributes: Element attributes (href, type, id, class, name, aria-label)
        text: Trimmed text content
        form: Id of the enclosing form ("" for an anonymous form), None outside forms
    """
    tag: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    text: str = ""
    form: str | None = None


@dataclass(frozen=True)
class ClickClassification:
    category: ClickCategory
    label: str
    metadata: dict


def classify_click_target(target: ClickTarget, hostname: str = "") -> ClickClassification:
    """Map a click target onto LINK, BUTTON, FORM_ELEMENT or GENERIC.

    Links carry their href and an `external` flag: an absolute http(s) href
    that does not mention the current hostname.
    """
    tag = target.tag.lower()
    attributes = target.attributes
    label = target.text.strip() or attributes.get("aria-label", "")
    metadata: dict[str, Any] = {
        "tagName": tag,
        "className": attributes.get("class", ""),
        "id": attributes.get("id", ""),
    }

    if tag == "a":
        href = attributes.get("href")
        metadata["href"] = href
        metadata["external"] = bool(
            href and href.startswith("http") and (not hostname or hostname not in href)
        )
        return ClickClassification(ClickCategory.LINK, href or label, metadata)

    if tag == "button":
        metadata["type"] = attributes.get("type")
        return ClickClassification(ClickCategory.BUTTON, label, metadata)

    if target.form is not None:
        metadata["formId"] = target.form
        return ClickClassification(ClickCategory.FORM_ELEMENT, label, metadata)

    return ClickClassification(ClickCategory.GENERIC, label, metadata)


# =============================================================================
# SCROLL MILESTONES
# =============================================================================

class ScrollMilestones:
    """Running maximum scroll depth; each milestone is reported once."""

    def __init__(self, milestones: tuple[int, ...] = SCROLL_MILESTONES):
        self.milestones = tuple(sorted(milestones))
        self.max_depth = 0
        self._reached: set[int] = set()

    def update(self, percent: float) -> list[int]:
        """Record a scroll position; return milestones crossed for the first time."""
        percent = max(0, min(100, round(percent)))
        if percent <= self.max_depth:
            return []
        self.max_depth = percent
        crossed = [m for m in self.milestones if m <= percent and m not in self._reached]
        self._reached.update(crossed)
        return crossed

    def reset(self) -> None:
        self.max_depth = 0
        self._reached.clear()


def scroll_percent(scroll_y: float, scroll_height: float, viewport_height: float) -> float:
    scrollable = scroll_height - viewport_height
    if scrollable <= 0:
        return 100.0
    return scroll_y / scrollable * 100


# =============================================================================
# TRACKER
# =============================================================================

class Tracker:
    """Page-lifetime tracker: session bootstrap, instrumentation, delivery."""

    def __init__(
        self,
        transport: Transport,
        beacon: Beacon,
        page: PageContext,
        config: TrackerConfig | None = None,
        clock: Callable[[], float] = _now_ms,
    ):
        self.transport = transport
        self.beacon = beacon
        self.page = page
        self.config = config or TrackerConfig()
        self._clock = clock

        self.session: SessionInfo | None = None
        self.current_page = ""
        self.page_start: float = 0
        self.scroll = ScrollMilestones()

        self._disabled = False
        self._pending: list[tuple[str, tuple]] = []
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._init_task: asyncio.Future | None = None

    def _log(self, message: str) -> None:
        if self.config.debug:
            logger.debug(f"[Analytics] {message}")

    def _timestamp(self, at: float) -> str:
        return datetime.fromtimestamp(at / 1000, tz=timezone.utc).isoformat()

    @property
    def is_returning_visitor(self) -> bool:
        return bool(self.session and self.session.is_returning_visitor)

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    async def init(self) -> bool:
        """Bootstrap the session. Safe to call repeatedly; runs once.

        Returns:
            True once a session is established, False if the bootstrap failed
        """
        if self._init_task is None:
            if self.config.track_page_views:
                self.track_page_view()
            self._init_task = asyncio.ensure_future(self._bootstrap())
        return await asyncio.shield(self._init_task)

    async def _bootstrap(self) -> bool:
        payload = {
            "screen": {
                "width": self.page.screen_width,
                "height": self.page.screen_height,
                "colorDepth": self.page.color_depth,
            },
            "language": self.page.language,
            "timezone": self.page.timezone,
            "referrer": self.page.referrer,
            "currentUrl": self.page.url,
        }
        try:
            data = await self.transport.post("/session", payload)
            self.session = SessionInfo(
                session_id=data["sessionId"],
                visitor_id=data["visitorId"],
                is_returning_visitor=bool(data.get("isReturningVisitor")),
            )
        except Exception as exc:
            logger.error(f"Analytics session bootstrap failed, tracking disabled: {exc}")
            self._disabled = True
            self._pending.clear()
            return False

        self._log(f"Session initialized: {self.session.session_id}")
        self._drain()
        return True

    def _drain(self) -> None:
        pending, self._pending = self._pending, []
        for kind, args in pending:
            if kind == "pageview":
                self._page_view(*args)
            elif kind == "event":
                self._event(*args)
            else:
                self._record(*args)

    def _buffer(self, kind: str, args: tuple) -> bool:
        """Buffer a call made before the session is known; True if buffered or dropped."""
        if self.session is not None:
            return False
        if not self._disabled:
            self._pending.append((kind, args))
        return True

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _send(self, path: str, body: dict) -> None:
        payload = {
            "sessionId": self.session.session_id,
            "visitorId": self.session.visitor_id,
            **{key: value for key, value in body.items() if value is not None},
        }
        self._outbox.put_nowait((path, payload))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._deliver())

    async def _deliver(self) -> None:
        while True:
            path, payload = await self._outbox.get()
            try:
                await self.transport.post(path, payload)
                self._log(f"Delivered {path}")
            except Exception as exc:
                logger.warning(f"Analytics delivery to {path} failed: {exc}")
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued record has been handed to the transport."""
        await self._outbox.join()

    async def close(self) -> None:
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    # -------------------------------------------------------------------------
    # Page views
    # -------------------------------------------------------------------------

    def track_page_view(self, page: str | None = None, title: str | None = None) -> None:
        """Close out the current page (with its duration) and start timing a new one."""
        at = self._clock()
        if self._buffer("pageview", (page, title, at)):
            return
        self._page_view(page, title, at)

    def _page_view(self, page: str | None, title: str | None, at: float) -> None:
        self._close_page(at)
        self.current_page = page or self.page.path
        self.page_start = at
        self.scroll.reset()
        self._send("/pageview", {
            "page": self.current_page,
            "title": title or self.page.title,
            "referrer": self.page.referrer or None,
            "timestamp": self._timestamp(at),
        })

    def _close_page(self, at: float) -> None:
        if not self.current_page or not self.page_start:
            return
        self._send("/pageview", {
            "page": self.current_page,
            "title": self.page.title,
            "duration": max(0, int(at - self.page_start)),
            "scrollDepth": self.scroll.max_depth,
            "timestamp": self._timestamp(at),
        })

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def track_event(
        self,
        event_type: str,
        category: str,
        action: str,
        label: str | None = None,
        value: float | None = None,
        metadata: dict | None = None,
    ) -> None:
        at = self._clock()
        if self._buffer("event", (event_type, category, action, label, value, metadata, at)):
            return
        self._event(event_type, category, action, label, value, metadata, at)

    def _event(self, event_type, category, action, label, value, metadata, at: float) -> None:
        self._send("/event", {
            "eventType": event_type,
            "eventCategory": category,
            "eventAction": action,
            "eventLabel": label,
            "eventValue": value,
            "page": self.current_page or self.page.path,
            "metadata": metadata,
            "timestamp": self._timestamp(at),
        })

    def track_download(self, filename: str, url: str) -> None:
        self.track_event("interaction", "download", "click", filename, metadata={"url": url})

    def track_outbound_link(self, url: str, label: str | None = None) -> None:
        self.track_event("interaction", "outbound-link", "click", label or url, metadata={"url": url})

    def track_search(self, query: str, results: int | None = None) -> None:
        self.track_event("interaction", "search", "query", query, results)

    def track_video_play(self, title: str, duration: float | None = None) -> None:
        self.track_event("media", "video", "play", title, duration)

    def track_video_complete(self, title: str, duration: float | None = None) -> None:
        self.track_event("media", "video", "complete", title, duration)

    def track_error(self, message: str, error_type: str | None = None) -> None:
        self.track_event("error", error_type or "javascript", "error", message)

    def track_timing(self, category: str, variable: str, duration_ms: float, label: str | None = None) -> None:
        self.track_event("timing", category, variable, label, duration_ms)

    def track_form_submit_result(self, form_id: str, success: bool) -> None:
        self.track_event(
            "conversion", "form", "success" if success else "failure", form_id,
            metadata={"formId": form_id},
        )

    def track_click(self, label: str, category: str = ClickCategory.GENERIC.value, metadata: dict | None = None) -> None:
        """Record a click the host detected itself."""
        self.track_event("interaction", category, "click", label, metadata=metadata)

    # -------------------------------------------------------------------------
    # Form, error and performance records
    # -------------------------------------------------------------------------

    def _track_record(self, path: str, body: dict) -> None:
        at = self._clock()
        if self._buffer("record", (path, body, at)):
            return
        self._record(path, body, at)

    def _record(self, path: str, body: dict, at: float) -> None:
        self._send(path, {
            "page": self.current_page or self.page.path,
            **body,
            "timestamp": self._timestamp(at),
        })

    def track_form_submission(
        self,
        form_id: str,
        form_name: str,
        success: bool,
        fields: list[str] | None = None,
        completion_time: int | None = None,
    ) -> None:
        self._track_record("/form", {
            "formId": form_id,
            "formName": form_name,
            "success": success,
            "fields": fields,
            "completionTime": completion_time,
        })

    def report_error(
        self,
        error_type: str,
        message: str,
        stack: str | None = None,
        user_action: str | None = None,
        severity: str = "medium",
    ) -> None:
        self._track_record("/error", {
            "errorType": error_type,
            "errorMessage": message,
            "errorStack": stack,
            "userAction": user_action,
            "severity": severity,
        })

    def track_performance(
        self,
        metric_type: str,
        metric_name: str,
        value: float,
        additional_data: dict | None = None,
    ) -> None:
        self._track_record("/performance", {
            "metricType": metric_type,
            "metricName": metric_name,
            "value": value,
            "additionalData": additional_data,
        })

    # -------------------------------------------------------------------------
    # Host notifications
    # -------------------------------------------------------------------------

    def on_navigate(self, path: str, title: str | None = None, url: str | None = None) -> None:
        """Client-side navigation (pushState, replaceState, popstate)."""
        if self.config.track_page_views and path != self.current_page:
            # Close out under the old title before adopting the new one
            self.track_page_view(path, title)
        self.page.path = path
        if title is not None:
            self.page.title = title
        if url is not None:
            self.page.url = url

    def on_click(self, target: ClickTarget) -> None:
        if not self.config.track_clicks:
            return
        result = classify_click_target(target, self.page.hostname)
        self.track_event("interaction", result.category.value, "click", result.label, metadata=result.metadata)

    def on_scroll(self, scroll_y: float, scroll_height: float, viewport_height: float) -> None:
        if not self.config.track_scrolling:
            return
        for milestone in self.scroll.update(scroll_percent(scroll_y, scroll_height, viewport_height)):
            self.track_event("engagement", "scroll", "milestone", f"{milestone}%", milestone)

    def on_submit(self, form_id: str = "", form_class: str = "", method: str = "", action: str = "") -> None:
        if not self.config.track_forms:
            return
        self.track_event(
            "interaction", "form", "submit", form_id or form_class or "unnamed-form",
            metadata={"formId": form_id, "formClass": form_class, "formMethod": method, "formAction": action},
        )

    def on_focus(self, target: ClickTarget) -> None:
        if not self.config.track_forms or target.tag.lower() not in FORM_FIELD_TAGS:
            return
        name = target.attributes.get("name")
        self.track_event(
            "interaction", "form-field", "focus", name or target.attributes.get("id", ""),
            metadata={
                "fieldType": target.attributes.get("type") or target.tag.lower(),
                "formId": target.form,
                "fieldName": name,
            },
        )

    def on_visibility_change(self, hidden: bool) -> None:
        """Hidden closes out the current page; visible restarts its timer."""
        if self.session is None:
            return
        at = self._clock()
        if hidden:
            self._close_page(at)
            self.track_event("engagement", "page", "hidden")
        else:
            self.page_start = at
            self.track_event("engagement", "page", "visible")

    def on_unload(self) -> bool:
        """Send the closing page view through the beacon."""
        if self.session is None or not self.current_page or not self.page_start:
            return False
        at = self._clock()
        return self.beacon.send("/pageview", {
            "sessionId": self.session.session_id,
            "visitorId": self.session.visitor_id,
            "page": self.current_page,
            "title": self.page.title,
            "duration": max(0, int(at - self.page_start)),
            "scrollDepth": self.scroll.max_depth,
            "timestamp": self._timestamp(at),
        })
