"""Pydantic schemas for email classification."""

from datetime import datetime
from typing import Any
from uuid import UUID

from leadflow.schemas.base import CamelModel


class ClassifyRequest(CamelModel):
    email_id: UUID


class IntelligenceRecordRead(CamelModel):
    """Stored classification for one message."""
    id: UUID
    email_id: UUID
    thread_id: UUID | None = None
    category: str
    priority_score: int
    lead_score: int
    confidence_score: float
    sentiment_score: float
    key_entities: dict[str, Any] | None = None
    reasoning: str | None = None
    suggested_action: str | None = None
    model_used: str | None = None
    processing_status: str
    processed_at: datetime | None = None
