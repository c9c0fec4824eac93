"""Pydantic schemas for lead intelligence alerts."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from leadflow.schemas.base import CamelModel


class AlertCondition(CamelModel):
    """One ``field operator value`` test; operators: gte, lte, eq, gt, lt, contains."""
    field: str
    operator: str
    value: Any = None


class AlertRequest(CamelModel):
    type: str = Field(min_length=1)
    lead_intelligence_id: UUID
    threshold: float | None = None
    conditions: list[AlertCondition] | None = None


class AlertResult(CamelModel):
    id: UUID | None = None
    type: str
    triggered: bool
    deduplicated: bool = False
    lead_id: UUID | None = None
    contact_id: UUID | None = None
    message: str | None = None
    priority: str | None = None


class AlertResponse(CamelModel):
    alert: AlertResult


class BatchAlertItem(CamelModel):
    type: str
    lead_intelligence_id: UUID
    lead_id: UUID | None = None
    contact_id: UUID | None = None
    notification_id: UUID
    score: int
    conversion_probability: float


class BatchAlertResponse(CamelModel):
    processed: int
    alerts_triggered: int
    alerts: list[BatchAlertItem]


class NotificationRead(CamelModel):
    id: UUID
    type: str
    priority: str
    title: str
    message: str
    data: dict[str, Any] | None = None
    read_at: datetime | None = None
    created_at: datetime


class AlertSummary(CamelModel):
    total: int
    unread: int
    high: int
    medium: int
    low: int


class AlertListResponse(CamelModel):
    alerts: list[NotificationRead]
    summary: AlertSummary
