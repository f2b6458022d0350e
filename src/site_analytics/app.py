"""
Standalone analytics service.

Run with:
    uvicorn site_analytics.app:create_app --factory
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import Analytics, __version__
from .config import AnalyticsConfig

logger = logging.getLogger(__name__)


def create_app(config: AnalyticsConfig | None = None, analytics: Analytics | None = None) -> FastAPI:
    """Build a FastAPI app serving both routers under config.api_prefix.

    Args:
        config: Analytics configuration (read from ANALYTICS_* env vars if omitted)
        analytics: Pre-built Analytics instance, e.g. with a test database
    """
    if analytics is not None:
        config = analytics.config
    config = config or AnalyticsConfig.from_env()
    analytics = analytics or Analytics(config)

    if config.debug:
        logging.getLogger("site_analytics").setLevel(logging.DEBUG)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Preparing analytics storage for {config.site_name}")
        await analytics.ensure_schema()
        yield
        logger.info("Shutting down analytics")

    app = FastAPI(title=f"{config.site_name} analytics", version=__version__, lifespan=lifespan)
    app.state.analytics = analytics

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    app.include_router(analytics.collect_router, prefix=config.api_prefix)
    app.include_router(analytics.dashboard_router, prefix=config.api_prefix)
    return app
