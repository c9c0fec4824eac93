"""Incremental sync of one email account.

Fetches provider changes since the stored cursor, stores new messages under
their threads, and advances the cursor only after the messages it covers are
committed. Re-running over an already-stored range is a no-op because messages
are unique per (org_id, provider_message_id).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.core.config import settings
from leadflow.core.encryption import EncryptionService, get_encryption_service
from leadflow.core.structured_logging import build_log_context
from leadflow.db.enums import AccountStatus, SyncStatus, TokenStatus
from leadflow.db.models import EmailAccount, EmailMessage, EmailThread
from leadflow.services.provider_client import (
    AuthError,
    HistoryExpiredError,
    ItemNotFoundError,
    ProviderClient,
    ProviderError,
    ProviderMessage,
    ProviderTransientError,
)
from leadflow.utils.datetime_parsing import as_utc, utcnow
from leadflow.utils.normalization import clean_subject, split_address_list, subject_index

logger = logging.getLogger(__name__)

ERROR_REASON_MAX_CHARS = 500


@dataclass
class EmailSyncResult:
    new_messages: int = 0
    new_threads: int = 0
    skipped_duplicates: int = 0
    skipped_missing: int = 0
    pages: int = 0
    cursor: str | None = None
    truncated: bool = False
    resumed: bool = False
    thread_ids: set[UUID] = field(default_factory=set)


# =============================================================================
# Thread resolution
# =============================================================================

def find_thread(db: Session, *, org_id: UUID, account_id: UUID, index: str) -> EmailThread | None:
    """
    Resolve the thread for a subject index.

    Exact match first, then a stored index that contains this one. The
    containment fallback can merge unrelated threads with overlapping subjects.
    """
    base = db.query(EmailThread).filter(
        EmailThread.org_id == org_id,
        EmailThread.account_id == account_id,
    )
    thread = base.filter(EmailThread.subject_index == index).order_by(EmailThread.created_at).first()
    if thread or not index:
        return thread
    return (
        base.filter(EmailThread.subject_index.contains(index, autoescape=True))
        .order_by(EmailThread.created_at)
        .first()
    )


def _merge_participants(existing: str, message: ProviderMessage) -> str:
    addresses = [value for value in existing.split(",") if value] if existing else []
    for header in (message.from_address, message.to, message.cc):
        for address in split_address_list(header):
            if address not in addresses:
                addresses.append(address)
    return ",".join(addresses)


def _resolve_or_create_thread(
    db: Session,
    account: EmailAccount,
    message: ProviderMessage,
    encryption: EncryptionService,
) -> tuple[EmailThread, bool]:
    index = subject_index(message.subject)
    thread = find_thread(db, org_id=account.org_id, account_id=account.id, index=index)
    if thread:
        return thread, False

    thread = EmailThread(
        org_id=account.org_id,
        account_id=account.id,
        provider_thread_id=message.provider_thread_id,
        subject_enc=encryption.encrypt_field(
            account.org_id, clean_subject(message.subject) or "(No subject)", "email:subject"
        ),
        subject_index=index,
        participants_index="",
        message_count=0,
    )
    db.add(thread)
    # Later messages in this batch must find the new thread.
    db.flush()
    return thread, True


# =============================================================================
# Message persistence
# =============================================================================

def message_exists(db: Session, *, org_id: UUID, provider_message_id: str) -> bool:
    return (
        db.query(EmailMessage.id)
        .filter(
            EmailMessage.org_id == org_id,
            EmailMessage.provider_message_id == provider_message_id,
        )
        .first()
        is not None
    )


def _store_message(
    db: Session,
    account: EmailAccount,
    message: ProviderMessage,
    encryption: EncryptionService,
    result: EmailSyncResult,
) -> None:
    """Check-then-insert under the (org_id, provider_message_id) key."""
    if message_exists(db, org_id=account.org_id, provider_message_id=message.provider_message_id):
        result.skipped_duplicates += 1
        return

    org_id = account.org_id
    savepoint = db.begin_nested()
    try:
        thread, created = _resolve_or_create_thread(db, account, message, encryption)
        body = json.dumps({"type": message.body_type, "content": message.body_content})
        row = EmailMessage(
            org_id=org_id,
            account_id=account.id,
            thread_id=thread.id,
            provider_message_id=message.provider_message_id,
            provider_thread_id=message.provider_thread_id,
            subject_enc=encryption.encrypt_field(org_id, message.subject, "email:subject"),
            body_enc=encryption.encrypt_field(org_id, body, "email:body"),
            from_enc=encryption.encrypt_field(org_id, message.from_address, "email:from"),
            to_enc=encryption.encrypt_field(org_id, message.to, "email:to"),
            cc_enc=encryption.encrypt_field(org_id, message.cc, "email:cc"),
            bcc_enc=encryption.encrypt_field(org_id, message.bcc, "email:bcc"),
            snippet_enc=encryption.encrypt_field(org_id, message.snippet, "email:snippet"),
            attachments=message.attachments or None,
            is_read=message.is_read,
            sent_at=message.sent_at,
        )
        db.add(row)

        thread.message_count = (thread.message_count or 0) + 1
        if message.sent_at and (
            thread.last_message_at is None or message.sent_at > as_utc(thread.last_message_at)
        ):
            thread.last_message_at = message.sent_at
        participants = _merge_participants(thread.participants_index or "", message)
        if participants != thread.participants_index:
            thread.participants_index = participants
            thread.participants_enc = encryption.encrypt_field(
                org_id, participants, "email:participants"
            )
        db.flush()
        savepoint.commit()
    except IntegrityError:
        # Concurrent writer inserted the same provider message first.
        savepoint.rollback()
        result.skipped_duplicates += 1
        return

    result.new_messages += 1
    result.thread_ids.add(thread.id)
    if created:
        result.new_threads += 1


def store_batch(
    db: Session,
    account: EmailAccount,
    messages: list[ProviderMessage],
    *,
    encryption: EncryptionService,
    result: EmailSyncResult,
) -> None:
    """Persist a batch and commit it."""
    seen: set[str] = set()
    for message in messages:
        if message.provider_message_id in seen:
            continue
        seen.add(message.provider_message_id)
        _store_message(db, account, message, encryption, result)
    db.commit()


# =============================================================================
# Cursor handling
# =============================================================================

def _next_cursor(client: ProviderClient, current: str | None, candidate: str | None) -> str | None:
    if candidate is None:
        return current
    if client.numeric_cursor and current is not None:
        return str(max(int(current), int(candidate)))
    return candidate


def _write_cursor(account: EmailAccount, client: ProviderClient, cursor: str | None) -> None:
    if cursor is None:
        return
    if client.numeric_cursor:
        account.history_id = int(cursor)
    else:
        account.delta_token = cursor


def _clear_cursor(account: EmailAccount) -> None:
    account.history_id = None
    account.delta_token = None
    account.delta_resume_link = None


# =============================================================================
# Status transitions
# =============================================================================

def mark_account_synced(account: EmailAccount) -> None:
    account.status = AccountStatus.CONNECTED.value
    account.sync_status = SyncStatus.READY.value
    account.token_status = TokenStatus.ENCRYPTED.value
    account.error_reason = None
    account.last_synced_at = utcnow()


def mark_account_failed(account: EmailAccount, error: Exception, *, needs_action: bool) -> None:
    if needs_action:
        account.status = AccountStatus.ACTION_NEEDED.value
    if isinstance(error, AuthError):
        account.token_status = TokenStatus.EXPIRED.value
    account.sync_status = SyncStatus.ERROR.value
    account.error_reason = (str(error) or error.__class__.__name__)[:ERROR_REASON_MAX_CHARS]


# =============================================================================
# Sync
# =============================================================================

def _fetch_page_messages(
    db: Session,
    account: EmailAccount,
    client: ProviderClient,
    page,
    *,
    remaining_threads: int,
    result: EmailSyncResult,
    log_context: dict,
) -> tuple[list[ProviderMessage], int]:
    """
    Hydrate a page. Returns (messages, threads_fetched).

    Items deleted between listing and fetching are skipped; the rest of the
    page still syncs.
    """
    messages: list[ProviderMessage] = list(page.messages)
    threads_fetched = 0
    for thread_id in page.thread_ids:
        if threads_fetched >= remaining_threads:
            break
        threads_fetched += 1
        try:
            messages.extend(client.get_thread(thread_id))
        except ItemNotFoundError:
            result.skipped_missing += 1
            logger.info("Listed thread no longer exists", extra={**log_context, "action": "email_sync_item_missing"})
    for message_id in page.message_ids:
        # Skip the fetch entirely for messages we already have.
        if message_exists(db, org_id=account.org_id, provider_message_id=message_id):
            continue
        try:
            messages.append(client.get_message(message_id))
        except ItemNotFoundError:
            result.skipped_missing += 1
            logger.info("Listed message no longer exists", extra={**log_context, "action": "email_sync_item_missing"})
    return messages, threads_fetched


def sync_email_account(
    db: Session,
    account: EmailAccount,
    client: ProviderClient,
    *,
    force_full: bool = False,
    encryption: EncryptionService | None = None,
    max_pages: int | None = None,
    max_items: int | None = None,
    correlation_id: str | None = None,
) -> EmailSyncResult:
    """
    Run one incremental sync for ``account``.

    Raises ProviderError subclasses after recording the failure on the account.
    SQLAlchemyError propagates after rollback with the cursor untouched.
    """
    encryption = encryption or get_encryption_service()
    max_pages = max_pages or settings.SYNC_MAX_PAGES
    if max_items is None:
        max_items = settings.SYNC_MAX_ITEMS if client.numeric_cursor else settings.GRAPH_MAX_MESSAGES

    log_context = build_log_context(
        org_id=account.org_id,
        account_id=account.id,
        provider=account.provider,
        correlation_id=correlation_id,
    )
    stored_cursor = account.cursor
    start_cursor = None if force_full else stored_cursor
    result = EmailSyncResult(cursor=stored_cursor)

    page_token: str | None = None
    if client.resumable_pages and not force_full and account.delta_resume_link:
        page_token = account.delta_resume_link
        result.resumed = True

    logger.info(
        "Email account sync started",
        extra={
            **log_context,
            "action": "email_sync_start",
            "full_sync": start_cursor is None,
            "resumed": result.resumed,
        },
    )

    account.sync_status = SyncStatus.SYNCING.value
    db.commit()

    new_cursor = stored_cursor
    resume_link: str | None = None
    items = 0
    try:
        while True:
            page = client.list_changed_threads(start_cursor, page_token)
            result.pages += 1

            messages, threads_fetched = _fetch_page_messages(
                db,
                account,
                client,
                page,
                remaining_threads=max_items - items,
                result=result,
                log_context=log_context,
            )
            items += threads_fetched + len(page.message_ids) + len(page.messages)
            store_batch(db, account, messages, encryption=encryption, result=result)

            page_token = page.next_page_token
            hit_cap = result.pages >= max_pages or items >= max_items
            truncated_threads = threads_fetched < len(page.thread_ids)
            if not page_token:
                new_cursor = _next_cursor(client, new_cursor, page.cursor or page.checkpoint)
                break
            if hit_cap or truncated_threads:
                # More pages remain; only positions this run actually covered count.
                result.truncated = True
                new_cursor = _next_cursor(client, new_cursor, page.checkpoint)
                if client.resumable_pages and not truncated_threads:
                    resume_link = page_token
                break
            new_cursor = _next_cursor(client, new_cursor, page.checkpoint)

    except HistoryExpiredError as exc:
        db.rollback()
        _clear_cursor(account)
        mark_account_failed(account, exc, needs_action=False)
        db.commit()
        logger.warning("Sync cursor expired; next run is a full sync", extra={**log_context, "action": "email_sync_cursor_expired"})
        raise
    except ProviderTransientError as exc:
        db.rollback()
        mark_account_failed(account, exc, needs_action=False)
        db.commit()
        logger.warning("Transient provider error", extra={**log_context, "action": "email_sync_transient", "error": str(exc)[:200]})
        raise
    except ProviderError as exc:
        db.rollback()
        mark_account_failed(account, exc, needs_action=True)
        db.commit()
        logger.error("Email account sync failed", extra={**log_context, "action": "email_sync_failed", "error": str(exc)[:200]})
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Email account sync store failure", extra={**log_context, "action": "email_sync_store_error"})
        raise

    # Every batch above is committed; the cursor may now move.
    _write_cursor(account, client, new_cursor)
    if client.resumable_pages:
        account.delta_resume_link = resume_link
    mark_account_synced(account)
    db.commit()
    result.cursor = account.cursor

    logger.info(
        "Email account sync completed",
        extra={
            **log_context,
            "action": "email_sync_complete",
            "new_messages": result.new_messages,
            "new_threads": result.new_threads,
            "pages": result.pages,
            "skipped_missing": result.skipped_missing,
            "truncated": result.truncated,
        },
    )
    return result


def count_threads(db: Session, account: EmailAccount) -> int:
    return (
        db.query(EmailThread)
        .filter(EmailThread.org_id == account.org_id, EmailThread.account_id == account.id)
        .count()
    )
