"""Lead intelligence scores and insights.

Rows are written by the lead scoring collaborator; the alert evaluator reads them.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadflow.db.base import Base
from leadflow.utils.datetime_parsing import utcnow


class LeadIntelligence(Base):
    __tablename__ = "lead_intelligence"
    __table_args__ = (
        Index("idx_lead_intelligence_org_analyzed", "org_id", "last_analyzed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    lead_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    overall_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_probability: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    urgency_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    engagement_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    competitor_mentions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    price_signals: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    decision_timeframe: Mapped[str | None] = mapped_column(String(30), nullable=True)

    last_analyzed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    insights: Mapped[list["LeadInsight"]] = relationship(back_populates="intelligence")

    @property
    def lead_key(self) -> str:
        """Stable identity used to match notifications to this lead."""
        if self.lead_id:
            return f"lead:{self.lead_id}"
        if self.contact_id:
            return f"contact:{self.contact_id}"
        return f"intelligence:{self.id}"

    @property
    def display_name(self) -> str:
        return self.lead_name or "Unknown lead"


class LeadInsight(Base):
    __tablename__ = "lead_insights"
    __table_args__ = (
        Index("idx_lead_insights_intelligence", "lead_intelligence_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    lead_intelligence_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("lead_intelligence.id", ondelete="CASCADE"), nullable=False
    )
    insight_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    intelligence: Mapped["LeadIntelligence"] = relationship(back_populates="insights")
