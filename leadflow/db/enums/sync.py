"""Provider account and sync enums."""

from enum import Enum


class Provider(str, Enum):
    """Mail/calendar providers."""
    GMAIL = "gmail"
    OUTLOOK = "outlook"  # Microsoft Graph
    GOOGLE_CALENDAR = "google_calendar"


class AccountStatus(str, Enum):
    """Connection state shown to operators."""
    NOT_CONNECTED = "not_connected"
    CONNECTED = "connected"
    ACTION_NEEDED = "action_needed"
    ERROR = "error"
    PAUSED = "paused"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    READY = "ready"
    ERROR = "error"


class TokenStatus(str, Enum):
    MISSING = "missing"
    ENCRYPTED = "encrypted"
    EXPIRED = "expired"


class AccountKind(str, Enum):
    EMAIL = "email"
    CALENDAR = "calendar"


class ThreadStatus(str, Enum):
    NEW = "new"
    PROCESSED = "processed"


# Email accounts keep syncing while they need attention so a refreshed token
# is picked up on the next tick.
EMAIL_SYNC_ELIGIBLE_STATUSES = (AccountStatus.CONNECTED.value, AccountStatus.ACTION_NEEDED.value)
CALENDAR_SYNC_ELIGIBLE_STATUSES = (AccountStatus.CONNECTED.value,)
