"""Pydantic schemas for API request/response models."""

from leadflow.schemas.alerts import (
    AlertListResponse,
    AlertRequest,
    AlertResponse,
    BatchAlertResponse,
    NotificationRead,
)
from leadflow.schemas.base import CamelModel
from leadflow.schemas.classification import ClassifyRequest, IntelligenceRecordRead
from leadflow.schemas.sync import (
    AutoSyncResponse,
    ManualSyncRequest,
    ManualSyncResponse,
    SchedulerStatusResponse,
    SyncStatusResponse,
)

__all__ = [
    "AlertListResponse",
    "AlertRequest",
    "AlertResponse",
    "BatchAlertResponse",
    "NotificationRead",
    "CamelModel",
    "ClassifyRequest",
    "IntelligenceRecordRead",
    "AutoSyncResponse",
    "ManualSyncRequest",
    "ManualSyncResponse",
    "SchedulerStatusResponse",
    "SyncStatusResponse",
]
