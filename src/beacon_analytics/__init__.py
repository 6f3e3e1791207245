"""
Self-hosted web analytics: beacon collection and reporting API.

Usage:
    from beacon_analytics import AnalyticsConfig, create_app

    app = create_app(AnalyticsConfig(database_path="data/analytics.db"))

Or mount the API on an existing FastAPI app:

    analytics = setup_analytics(config)
    app.include_router(analytics.router)
    # call analytics.startup() / analytics.shutdown() from your lifespan
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AnalyticsConfig, ConfigError
from .core import (
    AdminStore,
    AnalyticsClient,
    D1Database,
    Database,
    EventRecorder,
    RollupStore,
    SQLiteDatabase,
)
from .routes import create_api_router

__version__ = "0.1.0"
__all__ = [
    "Analytics",
    "AnalyticsConfig",
    "ConfigError",
    "create_app",
    "create_database",
    "setup_analytics",
]

logger = logging.getLogger(__name__)


def create_database(config: AnalyticsConfig) -> Database:
    """Storage backend selected by ``config.database_backend``."""
    if config.database_backend == "d1":
        return D1Database(
            d1_database_id=config.d1_database_id,
            cf_account_id=config.cf_account_id,
            cf_api_token=config.cf_api_token,
        )
    return SQLiteDatabase(config.database_path)


class Analytics:
    """Wires storage, recorder, reader and admin store to one API router."""

    def __init__(self, config: AnalyticsConfig, db: Database | None = None):
        self.config = config
        self.db = db or create_database(config)
        self.rollups = RollupStore(self.db)
        self.recorder = EventRecorder(self.db, self.rollups)
        self.client = AnalyticsClient(self.db, self.rollups)
        self.admin = AdminStore(self.db, config.admin_session_ttl_hours)
        self.router = create_api_router(
            self.recorder,
            self.client,
            self.admin,
            query_timeout=config.query_timeout_seconds,
        )

    async def startup(self) -> None:
        """Create the schema and bootstrap the admin user if configured."""
        await self.db.init_schema()

        if self.config.has_admin_bootstrap:
            await self.admin.upsert_admin_user(self.config.admin_email, self.config.admin_password)
            removed = await self.admin.cleanup_expired()
            if removed:
                logger.info(f"Removed {removed} expired admin sessions")

    async def shutdown(self) -> None:
        await self.db.close()


def setup_analytics(config: AnalyticsConfig | None = None, db: Database | None = None) -> Analytics:
    """Build the analytics service from config (environment by default)."""
    return Analytics(config or AnalyticsConfig.from_env(), db=db)


def create_app(config: AnalyticsConfig | None = None, db: Database | None = None) -> FastAPI:
    """Standalone FastAPI app serving the analytics API."""
    analytics = setup_analytics(config, db=db)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await analytics.startup()
        logger.info(f"Beacon Analytics ready ({analytics.config.database_backend} backend)")
        try:
            yield
        finally:
            await analytics.shutdown()

    app = FastAPI(title="Beacon Analytics", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=analytics.config.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(analytics.router)
    app.state.analytics = analytics
    return app
