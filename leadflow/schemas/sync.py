"""Pydantic schemas for sync endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from leadflow.schemas.base import CamelModel


class ManualSyncRequest(BaseModel):
    """Operator-forced sync."""
    force: bool = False


class AutoSyncResponse(CamelModel):
    success: bool
    correlation_id: str
    result: dict[str, Any]
    timestamp: datetime


class ManualSyncResponse(CamelModel):
    success: bool
    message: str
    correlation_id: str
    results: dict[str, Any]
    timestamp: datetime


class AccountSyncStatus(CamelModel):
    id: str
    email: str
    provider: str
    kind: str
    status: str
    sync_status: str
    token_status: str
    last_synced_at: str | None = None
    error_reason: str | None = None


class SyncStatusResponse(CamelModel):
    accounts: list[AccountSyncStatus]
    overall_health: str
    sync_in_progress: bool


class SchedulerStatusResponse(BaseModel):
    running: bool
    active_syncs: list[str]
    scheduled_tenants: list[str]
    max_concurrent: int
    email_interval_minutes: int
    calendar_interval_minutes: int
