"""Synced mail models: threads, messages, AI analyses and the reply queue."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadflow.db.base import Base
from leadflow.db.enums import ProcessingStatus, QueueStatus, ThreadStatus
from leadflow.utils.datetime_parsing import utcnow

if TYPE_CHECKING:
    from leadflow.db.models import EmailAccount


class EmailThread(Base):
    """
    Messages grouped by cleaned subject within one account.

    ``subject_index`` and ``participants_index`` hold lowercased plaintext used
    for lookups; display fields are encrypted.
    """
    __tablename__ = "email_threads"
    __table_args__ = (
        Index("idx_email_threads_lookup", "org_id", "account_id", "subject_index"),
        Index("idx_email_threads_org_status", "org_id", "status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_accounts.id", ondelete="CASCADE"), nullable=False
    )
    provider_thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    subject_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    subject_index: Mapped[str] = mapped_column(String(1000), default="", nullable=False)
    participants_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    participants_index: Mapped[str] = mapped_column(Text, default="", nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), default=ThreadStatus.NEW.value, nullable=False
    )
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    account: Mapped["EmailAccount"] = relationship()
    messages: Mapped[list["EmailMessage"]] = relationship(
        back_populates="thread", order_by="EmailMessage.sent_at"
    )


class EmailMessage(Base):
    """
    One provider message. Unique per (org_id, provider_message_id).

    Content columns are ciphertext produced by the encryption service; ``body_enc``
    decrypts to JSON ``{"type": "html"|"text", "content": ...}``.
    """
    __tablename__ = "email_messages"
    __table_args__ = (
        UniqueConstraint("org_id", "provider_message_id", name="uq_email_message_provider_id"),
        Index("idx_email_messages_thread", "thread_id", "sent_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_accounts.id", ondelete="CASCADE"), nullable=False
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False
    )
    provider_message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    subject_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    from_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    to_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    cc_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    bcc_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    snippet_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list | None] = mapped_column(JSON, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    thread: Mapped["EmailThread"] = relationship(back_populates="messages")
    analysis: Mapped["EmailAIAnalysis | None"] = relationship(
        back_populates="email", uselist=False
    )


class EmailAIAnalysis(Base):
    """Classification result; exactly one per message."""
    __tablename__ = "email_ai_analyses"
    __table_args__ = (
        UniqueConstraint("email_id", name="uq_email_ai_analysis_email"),
        Index("idx_email_ai_analyses_org_created", "org_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_messages.id", ondelete="CASCADE"), nullable=False
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False
    )

    category: Mapped[str] = mapped_column(String(50), nullable=False)
    priority_score: Mapped[int] = mapped_column(Integer, nullable=False)
    lead_score: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False)
    key_entities: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_action: Mapped[str | None] = mapped_column(Text, nullable=True)

    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processing_status: Mapped[str] = mapped_column(
        String(30), default=ProcessingStatus.COMPLETED.value, nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    email: Mapped["EmailMessage"] = relationship(back_populates="analysis")


class AIProcessingQueue(Base):
    """Work handed to the reply generation consumer."""
    __tablename__ = "ai_processing_queue"
    __table_args__ = (
        Index("idx_ai_queue_status_priority", "status", "priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_messages.id", ondelete="CASCADE"), nullable=False
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False
    )
    processing_type: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), default=QueueStatus.QUEUED.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
