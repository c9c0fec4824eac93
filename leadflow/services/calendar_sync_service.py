"""Window sync of one calendar account."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TypedDict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.core.encryption import EncryptionService, get_encryption_service
from leadflow.core.structured_logging import build_log_context
from leadflow.db.enums import AccountStatus, SyncStatus, TokenStatus
from leadflow.db.models import CalendarAccount, CalendarEvent
from leadflow.services.calendar_service import CalendarEventData, GoogleCalendarClient
from leadflow.services.provider_client import AuthError, ProviderError, ProviderTransientError
from leadflow.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)

MAX_EVENT_PAGES = 20


class CalendarSyncCounts(TypedDict):
    new_events: int
    updated_events: int


def _apply_event(
    row: CalendarEvent,
    event: CalendarEventData,
    *,
    org_id,
    encryption: EncryptionService,
) -> None:
    row.title_enc = encryption.encrypt_field(org_id, event["summary"], "calendar:title")
    row.description_enc = encryption.encrypt_field(org_id, event["description"], "calendar:description")
    row.location_enc = encryption.encrypt_field(org_id, event["location"], "calendar:location")
    row.start_at = event["start"]
    row.end_at = event["end"]
    row.all_day = event["is_all_day"]
    row.status = event["status"]
    row.attendee_count = event["attendee_count"]
    row.html_link = event["html_link"]
    row.provider_updated_at = event["updated"]


def _upsert_event(
    db: Session,
    account: CalendarAccount,
    event: CalendarEventData,
    encryption: EncryptionService,
    counts: CalendarSyncCounts,
) -> None:
    existing = (
        db.query(CalendarEvent)
        .filter(
            CalendarEvent.org_id == account.org_id,
            CalendarEvent.provider_event_id == event["id"],
        )
        .first()
    )
    if existing:
        if existing.provider_updated_at and event["updated"] and existing.provider_updated_at >= event["updated"]:
            return
        _apply_event(existing, event, org_id=account.org_id, encryption=encryption)
        counts["updated_events"] += 1
        return

    savepoint = db.begin_nested()
    try:
        row = CalendarEvent(org_id=account.org_id, account_id=account.id, provider_event_id=event["id"])
        _apply_event(row, event, org_id=account.org_id, encryption=encryption)
        db.add(row)
        db.flush()
        savepoint.commit()
    except IntegrityError:
        savepoint.rollback()
        return
    counts["new_events"] += 1


def sync_calendar_account(
    db: Session,
    account: CalendarAccount,
    client: GoogleCalendarClient,
    *,
    days_back: int,
    days_forward: int,
    encryption: EncryptionService | None = None,
    correlation_id: str | None = None,
) -> CalendarSyncCounts:
    """Upsert events in [now - days_back, now + days_forward]."""
    encryption = encryption or get_encryption_service()
    log_context = build_log_context(
        org_id=account.org_id,
        account_id=account.id,
        provider=account.provider,
        correlation_id=correlation_id,
    )
    now = utcnow()
    time_min = now - timedelta(days=days_back)
    time_max = now + timedelta(days=days_forward)
    counts = CalendarSyncCounts(new_events=0, updated_events=0)

    account.sync_status = SyncStatus.SYNCING.value
    db.commit()

    page_token: str | None = None
    try:
        for _ in range(MAX_EVENT_PAGES):
            page = client.list_events(time_min, time_max, page_token)
            for event in page["events"]:
                _upsert_event(db, account, event, encryption, counts)
            db.commit()
            page_token = page["next_page_token"]
            if not page_token:
                break
    except ProviderTransientError as exc:
        db.rollback()
        account.sync_status = SyncStatus.ERROR.value
        account.error_reason = str(exc)[:500]
        db.commit()
        logger.warning("Transient calendar error", extra={**log_context, "action": "calendar_sync_transient"})
        raise
    except ProviderError as exc:
        db.rollback()
        account.status = AccountStatus.ACTION_NEEDED.value
        account.sync_status = SyncStatus.ERROR.value
        if isinstance(exc, AuthError):
            account.token_status = TokenStatus.EXPIRED.value
        account.error_reason = str(exc)[:500]
        db.commit()
        logger.error("Calendar account sync failed", extra={**log_context, "action": "calendar_sync_failed"})
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Calendar sync store failure", extra={**log_context, "action": "calendar_sync_store_error"})
        raise

    account.status = AccountStatus.CONNECTED.value
    account.sync_status = SyncStatus.READY.value
    account.token_status = TokenStatus.ENCRYPTED.value
    account.error_reason = None
    account.last_synced_at = utcnow()
    db.commit()

    logger.info(
        "Calendar account sync completed",
        extra={**log_context, "action": "calendar_sync_complete", **counts},
    )
    return counts
