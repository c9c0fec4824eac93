"""Notification-related enums."""

from enum import Enum


class NotificationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertRuleType(str, Enum):
    """Lead intelligence alert rules. Notification type is ``intelligence_{value}``."""
    HIGH_SCORE = "high_score"
    HIGH_CONVERSION = "high_conversion"
    URGENT_LEAD = "urgent_lead"
    ENGAGEMENT_SPIKE = "engagement_spike"
    ACTION_REQUIRED = "action_required"
    SCORE_INCREASE = "score_increase"
    COMPETITOR_MENTION = "competitor_mention"
    PRICE_SENSITIVITY = "price_sensitivity"
    DECISION_TIMEFRAME = "decision_timeframe"
    CUSTOM = "custom"

    @property
    def notification_type(self) -> str:
        return f"{INTELLIGENCE_NOTIFICATION_PREFIX}{self.value}"


INTELLIGENCE_NOTIFICATION_PREFIX = "intelligence_"

# Raised by the post-sync lead workflow.
EMAIL_LEAD_NOTIFICATION_TYPE = "email_lead"
