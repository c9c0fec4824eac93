"""Hand-off queue for reply generation."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from leadflow.core.config import settings
from leadflow.db.enums import EmailCategory, ProcessingType, QueueStatus
from leadflow.db.models import AIProcessingQueue, EmailAIAnalysis

logger = logging.getLogger(__name__)


def needs_reply_generation(record: EmailAIAnalysis) -> bool:
    return (
        record.priority_score >= settings.REPLY_QUEUE_PRIORITY_THRESHOLD
        or record.category == EmailCategory.HOT_LEAD.value
    )


def enqueue_if_urgent(db: Session, record: EmailAIAnalysis) -> AIProcessingQueue | None:
    """Queue reply generation for urgent records; at most one item per email."""
    if not needs_reply_generation(record):
        return None

    existing = (
        db.query(AIProcessingQueue)
        .filter(
            AIProcessingQueue.email_id == record.email_id,
            AIProcessingQueue.processing_type == ProcessingType.REPLY_GENERATION.value,
        )
        .first()
    )
    if existing:
        return existing

    item = AIProcessingQueue(
        org_id=record.org_id,
        email_id=record.email_id,
        thread_id=record.thread_id,
        processing_type=ProcessingType.REPLY_GENERATION.value,
        priority=record.priority_score,
        status=QueueStatus.QUEUED.value,
    )
    db.add(item)
    db.commit()
    return item
