"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from leadflow.core.config import settings
from leadflow.db.session import SessionLocal, engine
from leadflow.services.sync_scheduler import sync_scheduler

logger = logging.getLogger(__name__)


# ============================================================================
# Lifespan (scheduler)
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SCHEDULER_ENABLED:
        with SessionLocal() as db:
            sync_scheduler.start_all(db)
    try:
        yield
    finally:
        if settings.SCHEDULER_ENABLED:
            sync_scheduler.stop_all()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Leadflow API",
    description="Multi-tenant email/calendar sync, lead classification and alerts",
    version=settings.VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    lifespan=lifespan,
)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Store failure", extra={"route": request.url.path, "action": "store_error"})
    return JSONResponse(status_code=500, content={"error": "store_error"})


# ============================================================================
# Routers
# ============================================================================

from leadflow.routers import alerts_router, classify_router, sync_router

app.include_router(sync_router)
app.include_router(classify_router)
app.include_router(alerts_router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
