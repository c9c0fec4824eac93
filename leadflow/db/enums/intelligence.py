"""Classification and lead intelligence enums."""

from enum import Enum


class EmailCategory(str, Enum):
    """Closed set of classification categories."""
    HOT_LEAD = "hot_lead"
    SHOWING_REQUEST = "showing_request"
    PRICE_INQUIRY = "price_inquiry"
    SELLER_LEAD = "seller_lead"
    BUYER_LEAD = "buyer_lead"
    FOLLOW_UP = "follow_up"
    CONTRACT = "contract"
    MARKETING = "marketing"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


DEFAULT_EMAIL_CATEGORY = EmailCategory.FOLLOW_UP

LEAD_CATEGORIES = frozenset(
    {
        EmailCategory.HOT_LEAD.value,
        EmailCategory.SHOWING_REQUEST.value,
        EmailCategory.SELLER_LEAD.value,
        EmailCategory.BUYER_LEAD.value,
    }
)


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingType(str, Enum):
    REPLY_GENERATION = "reply_generation"


class QueueStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DecisionTimeframe(str, Enum):
    IMMEDIATE = "immediate"
    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"
    UNKNOWN = "unknown"
