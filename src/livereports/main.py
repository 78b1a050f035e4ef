"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The hub is built here and stored on app.state, so it exists
even when the lifespan does not run (httpx ASGITransport in tests).
The lifespan owns the background pieces: the Redis change feed and the
refresh scheduler, both started and stopped explicitly.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livereports import __version__
from livereports.api import api_router
from livereports.config import Settings, settings
from livereports.log import configure_logging
from livereports.realtime.changes import ChangeFeed
from livereports.realtime.hub import ReportHub
from livereports.realtime.scheduler import RefreshScheduler
from livereports.reports.provider import HttpReportProvider, ReportDataProvider

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Redis is optional — without it the change feed is off and
    pushes can still be triggered over HTTP.
    """
    cfg: Settings = app.state.settings
    hub: ReportHub = app.state.hub

    logger.info(
        "livereports.starting",
        version=__version__,
        environment=cfg.environment,
        port=cfg.port,
    )

    if cfg.change_feed_enabled:
        feed = ChangeFeed(hub, cfg.redis_url, cfg.change_channel)
        try:
            await feed.connect()
            feed.start()
            app.state.change_feed = feed
            logger.info("livereports.redis_connected", url=cfg.redis_url)
        except Exception as e:
            logger.warning("livereports.redis_unavailable", error=str(e))
            await feed.stop()

    scheduler: Optional[RefreshScheduler] = None
    if cfg.refresh_interval_seconds > 0:
        scheduler = RefreshScheduler(hub, interval=cfg.refresh_interval_seconds)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("livereports.shutdown")

    if scheduler is not None:
        await scheduler.stop()

    if app.state.change_feed is not None:
        await app.state.change_feed.stop()
        app.state.change_feed = None

    close = getattr(hub.provider, "aclose", None)
    if close is not None:
        await close()


def create_app(
    config: Optional[Settings] = None,
    provider: Optional[ReportDataProvider] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    cfg = config or settings
    configure_logging(cfg.log_level, json=cfg.environment != "development")

    app = FastAPI(
        title="Live Reports Hub",
        description="Real-time push layer for the POS reporting dashboard",
        version=__version__,
        debug=cfg.debug,
        lifespan=lifespan,
    )

    if provider is None:
        provider = HttpReportProvider(
            cfg.report_service_url, timeout=cfg.report_service_timeout
        )

    app.state.settings = cfg
    app.state.hub = ReportHub(provider)
    app.state.change_feed = None
    app.state.scheduler = None

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.

    from livereports.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from livereports.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: livereports.main:app)
app = create_app()
