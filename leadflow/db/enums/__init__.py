"""Enum definitions for application constants."""

from leadflow.db.enums.intelligence import (
    DEFAULT_EMAIL_CATEGORY,
    LEAD_CATEGORIES,
    DecisionTimeframe,
    EmailCategory,
    ProcessingStatus,
    ProcessingType,
    QueueStatus,
)
from leadflow.db.enums.notifications import (
    EMAIL_LEAD_NOTIFICATION_TYPE,
    INTELLIGENCE_NOTIFICATION_PREFIX,
    AlertRuleType,
    NotificationPriority,
)
from leadflow.db.enums.sync import (
    CALENDAR_SYNC_ELIGIBLE_STATUSES,
    EMAIL_SYNC_ELIGIBLE_STATUSES,
    AccountKind,
    AccountStatus,
    Provider,
    SyncStatus,
    ThreadStatus,
    TokenStatus,
)

__all__ = [
    "AccountKind",
    "AccountStatus",
    "AlertRuleType",
    "CALENDAR_SYNC_ELIGIBLE_STATUSES",
    "DEFAULT_EMAIL_CATEGORY",
    "DecisionTimeframe",
    "EMAIL_LEAD_NOTIFICATION_TYPE",
    "EMAIL_SYNC_ELIGIBLE_STATUSES",
    "EmailCategory",
    "INTELLIGENCE_NOTIFICATION_PREFIX",
    "LEAD_CATEGORIES",
    "NotificationPriority",
    "ProcessingStatus",
    "ProcessingType",
    "Provider",
    "QueueStatus",
    "SyncStatus",
    "ThreadStatus",
    "TokenStatus",
]
