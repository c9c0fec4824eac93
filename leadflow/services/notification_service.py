"""
Notification Service - handles in-app notifications.

Provides creation with windowed dedupe plus listing for lead alerts.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from leadflow.db.enums import NotificationPriority
from leadflow.db.models import Notification
from leadflow.utils.datetime_parsing import utcnow


# =============================================================================
# Dedupe
# =============================================================================


def find_recent_notification(
    db: Session,
    *,
    org_id: UUID,
    type: str,
    lead_key: str,
    window: timedelta,
    now: Optional[datetime] = None,
) -> Optional[Notification]:
    """
    Find a notification of ``type`` for the same lead inside the trailing window.

    The lead is matched by dedupe key or by its identity appearing in the message.
    """
    cutoff = (now or utcnow()) - window
    return (
        db.query(Notification)
        .filter(
            Notification.org_id == org_id,
            Notification.type == type,
            Notification.created_at > cutoff,
            or_(
                Notification.dedupe_key == f"{type}:{lead_key}",
                Notification.message.contains(lead_key, autoescape=True),
            ),
        )
        .order_by(Notification.created_at.desc())
        .first()
    )


# =============================================================================
# Notification CRUD
# =============================================================================


def create_notification(
    db: Session,
    *,
    org_id: UUID,
    type: str,
    title: str,
    message: str,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    data: Optional[dict] = None,
    lead_key: Optional[str] = None,
    dedupe_window: Optional[timedelta] = None,
    user_id: Optional[UUID] = None,
) -> Optional[Notification]:
    """
    Create a notification.

    With ``lead_key`` and ``dedupe_window`` set, returns None when the same
    type was already raised for that lead inside the window.
    """
    dedupe_key = f"{type}:{lead_key}" if lead_key else None
    if lead_key and dedupe_window:
        existing = find_recent_notification(
            db, org_id=org_id, type=type, lead_key=lead_key, window=dedupe_window
        )
        if existing:
            return None  # Already notified

    notification = Notification(
        org_id=org_id,
        user_id=user_id,
        type=type,
        priority=priority.value,
        title=title[:255],
        message=message,
        data=data,
        dedupe_key=dedupe_key,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def get_notifications(
    db: Session,
    org_id: UUID,
    *,
    type_prefix: Optional[str] = None,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[Notification]:
    """List org notifications, newest first."""
    query = db.query(Notification).filter(Notification.org_id == org_id)
    if type_prefix:
        query = query.filter(Notification.type.startswith(type_prefix, autoescape=True))
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()


def summarize(notifications: list[Notification]) -> dict[str, int]:
    """Counts by read state and priority."""
    summary = {"total": len(notifications), "unread": 0}
    for priority in NotificationPriority:
        summary[priority.value] = 0
    for notification in notifications:
        if notification.read_at is None:
            summary["unread"] += 1
        if notification.priority in summary:
            summary[notification.priority] += 1
    return summary
