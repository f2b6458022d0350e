"""
Privacy-first visitor analytics for FastAPI sites.

Usage:
    from site_analytics import setup_analytics

    analytics = setup_analytics(
        site_name="example.dev",
        sqlite_path="analytics.sqlite3",
        passkey="pbkdf2:...",
    )

    # Tracker traffic and the read-only API
    app.include_router(analytics.collect_router, prefix="/api/analytics")
    app.include_router(analytics.dashboard_router, prefix="/api/analytics")

    # In templates: {{ analytics.tracking_script() }}
"""

from .config import AnalyticsConfig
from .core.client import AnalyticsClient
from .core.database import D1Database, Database, SQLiteDatabase
from .geo import IPGeolocator
from .routes import create_collect_router, create_dashboard_router
from .script import tracking_script
from .tracker import Tracker

__version__ = "0.3.0"
__all__ = [
    "setup_analytics", "Analytics", "AnalyticsConfig", "AnalyticsClient",
    "Database", "D1Database", "SQLiteDatabase", "IPGeolocator", "Tracker",
]


def create_database(config: AnalyticsConfig) -> Database:
    """D1 when its ids are configured, otherwise a local SQLite file."""
    if config.uses_d1:
        return D1Database(
            d1_database_id=config.d1_database_id,
            cf_account_id=config.cf_account_id,
            cf_api_token=config.cf_api_token,
        )
    return SQLiteDatabase(config.sqlite_path)


class Analytics:
    """Main analytics interface for a site."""

    def __init__(
        self,
        config: AnalyticsConfig,
        database: Database | None = None,
        geolocator: IPGeolocator | None = None,
    ):
        self.config = config
        self.site_name = config.site_name
        self.database = database or create_database(config)
        self.geolocator = geolocator or IPGeolocator(
            config.geolocation_url, config.geolocation_timeout_seconds
        )
        self.client = AnalyticsClient(self.database)
        self.collect_router = create_collect_router(config, self.database, self.geolocator)
        self.dashboard_router = create_dashboard_router(config, self.client)

    async def ensure_schema(self) -> None:
        await self.database.ensure_schema()

    def tracking_script(self) -> str:
        """Generate the tracking script HTML for templates.

        Features:
        - Session bootstrap with calls buffered until it completes
        - SPA navigation support (pushState, replaceState, popstate)
        - Click, scroll milestone, form submit and field focus capture
        - Closing page view sent with navigator.sendBeacon on unload
        """
        return tracking_script(self.config.api_prefix, self.config.debug)


def setup_analytics(
    site_name: str,
    sqlite_path: str = "analytics.sqlite3",
    d1_database_id: str | None = None,
    cf_account_id: str | None = None,
    cf_api_token: str | None = None,
    passkey: str | None = None,
    **options,
) -> Analytics:
    """
    Set up analytics for a site.

    Args:
        site_name: Identifier for this site (e.g., "example.dev")
        sqlite_path: Local database file, used unless all D1 settings are given
        d1_database_id: Cloudflare D1 database ID
        cf_account_id: Cloudflare account ID
        cf_api_token: Cloudflare API token with D1 read/write access
        passkey: Optional passkey protecting the read endpoints. Use
                 hash_passkey() to store it hashed.
        **options: Any other AnalyticsConfig field (session_timeout_minutes,
                   api_prefix, geolocation_url, ...)

    Returns:
        Analytics instance with collect_router, dashboard_router and tracking_script()
    """
    config = AnalyticsConfig(
        site_name=site_name,
        sqlite_path=sqlite_path,
        d1_database_id=d1_database_id,
        cf_account_id=cf_account_id,
        cf_api_token=cf_api_token,
        passkey=passkey,
        **options,
    )
    return Analytics(config)
