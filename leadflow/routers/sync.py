"""
Sync Router - /sync endpoints.

Auto (short time box, cooldowns respected) and manual (long time box,
optional force) cycles for the caller's tenant, plus account health.
Per-account failures are reported in the body; the request itself succeeds.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from leadflow.core.deps import get_ai_provider, get_db, get_org_scope, require_internal_secret
from leadflow.schemas.sync import (
    AutoSyncResponse,
    ManualSyncRequest,
    ManualSyncResponse,
    SchedulerStatusResponse,
    SyncStatusResponse,
)
from leadflow.services import sync_orchestrator
from leadflow.services.sync_scheduler import sync_scheduler
from leadflow.utils.datetime_parsing import utcnow


router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/auto", response_model=AutoSyncResponse)
async def auto_sync(
    org_id: UUID = Depends(get_org_scope),
    provider=Depends(get_ai_provider),
):
    """Sync eligible email and calendar accounts, then classify new threads."""
    cycle = await sync_orchestrator.run_auto_sync(org_id, provider=provider)
    return AutoSyncResponse(
        success=cycle.completed,
        correlation_id=cycle.correlation_id,
        result=sync_orchestrator.auto_result(cycle),
        timestamp=utcnow(),
    )


@router.post("/manual", response_model=ManualSyncResponse)
async def manual_sync(
    body: ManualSyncRequest | None = None,
    org_id: UUID = Depends(get_org_scope),
):
    """Sync every connected account; ``force`` ignores cursors and cooldowns."""
    force = body.force if body else False
    cycle = await sync_orchestrator.run_manual_sync(org_id, force=force)
    if cycle.busy:
        message = "Sync already in progress"
    elif cycle.timed_out:
        message = "Manual sync timed out"
    else:
        message = "Manual sync completed"
    return ManualSyncResponse(
        success=cycle.completed,
        message=message,
        correlation_id=cycle.correlation_id,
        results=sync_orchestrator.manual_result(cycle),
        timestamp=utcnow(),
    )


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    org_id: UUID = Depends(get_org_scope),
    db: Session = Depends(get_db),
):
    return sync_orchestrator.get_sync_status(db, org_id)


@router.get(
    "/scheduler",
    response_model=SchedulerStatusResponse,
    dependencies=[Depends(require_internal_secret)],
)
def scheduler_status():
    return sync_scheduler.status()
