"""Provider account models (email + calendar)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from leadflow.db.base import Base
from leadflow.db.enums import AccountStatus, SyncStatus, TokenStatus
from leadflow.utils.datetime_parsing import utcnow


class EmailAccount(Base):
    """
    A connected mailbox (Gmail or Microsoft Graph).

    Cursor columns: ``history_id`` for Gmail, ``delta_token`` for Graph.
    Both are written only by the account sync worker after the batch they
    describe has been committed. ``delta_resume_link`` holds the Graph
    ``@odata.nextLink`` where a capped enumeration stopped.
    """
    __tablename__ = "email_accounts"
    __table_args__ = (
        Index("idx_email_accounts_org_status", "org_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), default=AccountStatus.CONNECTED.value, nullable=False
    )
    sync_status: Mapped[str] = mapped_column(
        String(30), default=SyncStatus.IDLE.value, nullable=False
    )
    token_status: Mapped[str] = mapped_column(
        String(30), default=TokenStatus.ENCRYPTED.value, nullable=False
    )
    # Maintained by the token refresh collaborator; encrypted with "oauth:access_token".
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    history_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    delta_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    delta_resume_link: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def cursor(self) -> str | None:
        if self.history_id is not None:
            return str(self.history_id)
        return self.delta_token


class CalendarAccount(Base):
    """A connected Google calendar."""
    __tablename__ = "calendar_accounts"
    __table_args__ = (
        Index("idx_calendar_accounts_org_status", "org_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), default="primary", nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), default=AccountStatus.CONNECTED.value, nullable=False
    )
    sync_status: Mapped[str] = mapped_column(
        String(30), default=SyncStatus.IDLE.value, nullable=False
    )
    token_status: Mapped[str] = mapped_column(
        String(30), default=TokenStatus.ENCRYPTED.value, nullable=False
    )
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )
