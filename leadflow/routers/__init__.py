"""API routers."""

from leadflow.routers.alerts import router as alerts_router
from leadflow.routers.classify import router as classify_router
from leadflow.routers.sync import router as sync_router

__all__ = [
    "alerts_router",
    "classify_router",
    "sync_router",
]
