"""SQLAlchemy ORM models."""

from leadflow.db.models.accounts import CalendarAccount, EmailAccount
from leadflow.db.models.calendar import CalendarEvent
from leadflow.db.models.email import (
    AIProcessingQueue,
    EmailAIAnalysis,
    EmailMessage,
    EmailThread,
)
from leadflow.db.models.intelligence import LeadInsight, LeadIntelligence
from leadflow.db.models.notifications import Notification
from leadflow.db.models.tenancy import Organization

__all__ = [
    "AIProcessingQueue",
    "CalendarAccount",
    "CalendarEvent",
    "EmailAIAnalysis",
    "EmailAccount",
    "EmailMessage",
    "EmailThread",
    "LeadInsight",
    "LeadIntelligence",
    "Notification",
    "Organization",
]
