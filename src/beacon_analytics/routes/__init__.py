"""
HTTP routes for Beacon Analytics.
"""

from fastapi import APIRouter

from ..core.auth import AdminStore
from ..core.client import DEFAULT_QUERY_TIMEOUT, AnalyticsClient
from ..core.recorder import EventRecorder
from .auth import create_auth_router
from .reports import create_reports_router
from .tracking import create_tracking_router

__all__ = [
    "create_api_router",
    "create_auth_router",
    "create_reports_router",
    "create_tracking_router",
]


def create_api_router(
    recorder: EventRecorder,
    client: AnalyticsClient,
    admin: AdminStore,
    query_timeout: float = DEFAULT_QUERY_TIMEOUT,
) -> APIRouter:
    """All API routes in one router."""
    router = APIRouter()
    router.include_router(create_tracking_router(recorder))
    router.include_router(create_reports_router(client, admin, query_timeout))
    router.include_router(create_auth_router(admin))
    return router
