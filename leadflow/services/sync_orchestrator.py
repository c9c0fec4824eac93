"""
Tenant sync cycles.

A cycle syncs every selected account of one tenant (email, then calendar),
isolating failures per account, and optionally runs the post-sync AI pass
over new threads. Cycles run in a worker thread with their own session so a
time-boxed caller can stop waiting without leaving a half-used session behind.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.core.async_utils import run_async, run_blocking
from leadflow.core.config import settings
from leadflow.core.encryption import EncryptionService, get_encryption_service
from leadflow.core.structured_logging import build_log_context
from leadflow.db.enums import (
    CALENDAR_SYNC_ELIGIBLE_STATUSES,
    EMAIL_LEAD_NOTIFICATION_TYPE,
    EMAIL_SYNC_ELIGIBLE_STATUSES,
    LEAD_CATEGORIES,
    AccountKind,
    AccountStatus,
    NotificationPriority,
    ThreadStatus,
)
from leadflow.db.models import CalendarAccount, EmailAccount, EmailMessage, EmailThread
from leadflow.db.session import SessionLocal
from leadflow.services import (
    account_sync_service,
    calendar_sync_service,
    classification_service,
    notification_service,
)
from leadflow.services.ai_provider import AIProvider
from leadflow.services.provider_client import (
    ProviderError,
    build_calendar_client,
    build_email_client,
)
from leadflow.services.sync_registry import InFlightRegistry, TenantBusyError, in_flight
from leadflow.utils.datetime_parsing import as_utc, utcnow

logger = logging.getLogger(__name__)

# Statuses a manual sync leaves alone.
MANUAL_SYNC_EXCLUDED_STATUSES = (AccountStatus.NOT_CONNECTED.value, AccountStatus.PAUSED.value)

ERROR_TIMEOUT = "timeout"
ERROR_IN_PROGRESS = "sync_in_progress"
ERROR_NO_EMAIL_ACCOUNTS = "No connected email accounts found"
ERROR_NO_CALENDAR_ACCOUNTS = "No connected calendar accounts found"
ERROR_STORE = "store_error"


class SyncMode:
    AUTO = "auto"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


# =============================================================================
# Results
# =============================================================================

@dataclass
class AccountOutcome:
    id: UUID
    kind: str
    provider: str
    email: str
    success: bool = False
    skipped: bool = False
    new_messages: int = 0
    new_threads: int = 0
    total_threads: int = 0
    new_events: int = 0
    updated_events: int = 0
    error: str | None = None


@dataclass
class AIPassStats:
    analyzed_threads: int = 0
    leads_detected: int = 0
    notifications: int = 0


@dataclass
class TenantCycle:
    """
    Progress of one cycle. Filled in as stages finish, so a caller that
    timed out can still report the parts that completed.
    """
    org_id: UUID
    mode: str
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    include_email: bool = True
    include_calendar: bool = True
    email_accounts: list[AccountOutcome] = field(default_factory=list)
    calendar_accounts: list[AccountOutcome] = field(default_factory=list)
    email_done: bool = False
    calendar_done: bool = False
    email_error: str | None = None
    calendar_error: str | None = None
    ai: AIPassStats | None = None
    skip_reason: str | None = None
    timed_out: bool = False

    @property
    def busy(self) -> bool:
        return self.skip_reason is not None

    @property
    def completed(self) -> bool:
        return not self.busy and not self.timed_out


# =============================================================================
# Account selection
# =============================================================================

def list_email_accounts(db: Session, org_id: UUID, *, manual: bool = False) -> list[EmailAccount]:
    query = db.query(EmailAccount).filter(EmailAccount.org_id == org_id)
    if manual:
        query = query.filter(EmailAccount.status.notin_(MANUAL_SYNC_EXCLUDED_STATUSES))
    else:
        query = query.filter(EmailAccount.status.in_(EMAIL_SYNC_ELIGIBLE_STATUSES))
    return query.order_by(EmailAccount.created_at).all()


def list_calendar_accounts(db: Session, org_id: UUID, *, manual: bool = False) -> list[CalendarAccount]:
    query = db.query(CalendarAccount).filter(CalendarAccount.org_id == org_id)
    if manual:
        query = query.filter(CalendarAccount.status.notin_(MANUAL_SYNC_EXCLUDED_STATUSES))
    else:
        query = query.filter(CalendarAccount.status.in_(CALENDAR_SYNC_ELIGIBLE_STATUSES))
    return query.order_by(CalendarAccount.created_at).all()


def list_tenants_with_accounts(db: Session) -> list[UUID]:
    """Tenants that have at least one sync-eligible account."""
    email_orgs = {
        row[0]
        for row in db.query(EmailAccount.org_id)
        .filter(EmailAccount.status.in_(EMAIL_SYNC_ELIGIBLE_STATUSES))
        .distinct()
    }
    calendar_orgs = {
        row[0]
        for row in db.query(CalendarAccount.org_id)
        .filter(CalendarAccount.status.in_(CALENDAR_SYNC_ELIGIBLE_STATUSES))
        .distinct()
    }
    return sorted(email_orgs | calendar_orgs, key=str)


def within_cooldown(last_synced_at: datetime | None, minutes: int, *, now: datetime | None = None) -> bool:
    if last_synced_at is None:
        return False
    now = now or utcnow()
    return now - as_utc(last_synced_at) < timedelta(minutes=minutes)


# =============================================================================
# Per-account sync (failures isolated)
# =============================================================================

EmailClientFactory = Callable[..., object]
CalendarClientFactory = Callable[..., object]


def _record_build_failure(db: Session, account, exc: ProviderError) -> None:
    account_sync_service.mark_account_failed(account, exc, needs_action=True)
    db.commit()


def sync_one_email_account(
    db: Session,
    account: EmailAccount,
    *,
    force: bool = False,
    respect_cooldown: bool = True,
    encryption: EncryptionService,
    client_factory: EmailClientFactory = build_email_client,
    correlation_id: str | None = None,
) -> AccountOutcome:
    outcome = AccountOutcome(
        id=account.id,
        kind=AccountKind.EMAIL.value,
        provider=account.provider,
        email=account.email,
    )
    log_context = build_log_context(
        org_id=account.org_id,
        account_id=account.id,
        provider=account.provider,
        correlation_id=correlation_id,
    )

    if respect_cooldown and within_cooldown(account.last_synced_at, settings.EMAIL_SYNC_COOLDOWN_MINUTES):
        logger.info("Skipping email sync - recently synced", extra={**log_context, "action": "sync_skip_cooldown"})
        outcome.success = True
        outcome.skipped = True
        outcome.total_threads = account_sync_service.count_threads(db, account)
        return outcome

    try:
        client = client_factory(account, encryption=encryption)
    except ProviderError as exc:
        _record_build_failure(db, account, exc)
        outcome.error = str(exc)
        logger.error("Email client unavailable", extra={**log_context, "action": "email_client_failed"})
        return outcome

    try:
        with client:
            result = account_sync_service.sync_email_account(
                db,
                account,
                client,
                force_full=force,
                encryption=encryption,
                correlation_id=correlation_id,
            )
    except ProviderError as exc:
        # Status already recorded on the account by the worker.
        outcome.error = str(exc) or exc.__class__.__name__
        return outcome
    except SQLAlchemyError:
        db.rollback()
        outcome.error = ERROR_STORE
        return outcome

    outcome.success = True
    outcome.new_messages = result.new_messages
    outcome.new_threads = result.new_threads
    outcome.total_threads = account_sync_service.count_threads(db, account)
    return outcome


def sync_one_calendar_account(
    db: Session,
    account: CalendarAccount,
    *,
    days_back: int,
    days_forward: int,
    respect_cooldown: bool = True,
    encryption: EncryptionService,
    client_factory: CalendarClientFactory = build_calendar_client,
    correlation_id: str | None = None,
) -> AccountOutcome:
    outcome = AccountOutcome(
        id=account.id,
        kind=AccountKind.CALENDAR.value,
        provider=account.provider,
        email=account.email,
    )
    log_context = build_log_context(
        org_id=account.org_id,
        account_id=account.id,
        provider=account.provider,
        correlation_id=correlation_id,
    )

    if respect_cooldown and within_cooldown(account.last_synced_at, settings.CALENDAR_SYNC_COOLDOWN_MINUTES):
        logger.info("Skipping calendar sync - recently synced", extra={**log_context, "action": "sync_skip_cooldown"})
        outcome.success = True
        outcome.skipped = True
        return outcome

    try:
        client = client_factory(account, encryption=encryption)
    except ProviderError as exc:
        _record_build_failure(db, account, exc)
        outcome.error = str(exc)
        logger.error("Calendar client unavailable", extra={**log_context, "action": "calendar_client_failed"})
        return outcome

    try:
        with client:
            counts = calendar_sync_service.sync_calendar_account(
                db,
                account,
                client,
                days_back=days_back,
                days_forward=days_forward,
                encryption=encryption,
                correlation_id=correlation_id,
            )
    except ProviderError as exc:
        outcome.error = str(exc) or exc.__class__.__name__
        return outcome
    except SQLAlchemyError:
        db.rollback()
        outcome.error = ERROR_STORE
        return outcome

    outcome.success = True
    outcome.new_events = counts["new_events"]
    outcome.updated_events = counts["updated_events"]
    return outcome


# =============================================================================
# Post-sync AI pass
# =============================================================================

def _newest_message(db: Session, thread: EmailThread) -> EmailMessage | None:
    return (
        db.query(EmailMessage)
        .filter(EmailMessage.thread_id == thread.id, EmailMessage.org_id == thread.org_id)
        .order_by(EmailMessage.sent_at.desc(), EmailMessage.created_at.desc())
        .first()
    )


def _mark_processed(db: Session, thread: EmailThread) -> None:
    thread.status = ThreadStatus.PROCESSED.value
    db.commit()


def _notify_lead(db: Session, thread: EmailThread, record) -> bool:
    is_lead = record.category in LEAD_CATEGORIES
    if not is_lead and record.priority_score < settings.REPLY_QUEUE_PRIORITY_THRESHOLD:
        return False
    priority = (
        NotificationPriority.HIGH
        if record.priority_score >= settings.REPLY_QUEUE_PRIORITY_THRESHOLD
        else NotificationPriority.MEDIUM
    )
    lead_key = f"thread:{thread.id}"
    label = record.category.replace("_", " ")
    notification = notification_service.create_notification(
        db,
        org_id=thread.org_id,
        type=EMAIL_LEAD_NOTIFICATION_TYPE,
        title=f"New {label} email",
        message=f"Priority {record.priority_score}/100 ({lead_key})",
        priority=priority,
        data={
            "threadId": str(thread.id),
            "emailId": str(record.email_id),
            "category": record.category,
            "priorityScore": record.priority_score,
            "leadScore": record.lead_score,
        },
        lead_key=lead_key,
        dedupe_window=timedelta(hours=settings.ALERT_DEDUPE_WINDOW_HOURS),
    )
    return notification is not None


def analyze_new_threads(
    db: Session,
    org_id: UUID,
    *,
    provider: AIProvider,
    encryption: EncryptionService,
    limit: int | None = None,
    correlation_id: str | None = None,
) -> AIPassStats:
    """
    Classify the newest message of each unprocessed thread.

    Threads whose classification failed stay unprocessed and are retried on
    the next pass; a model outage ends the pass early.
    """
    stats = AIPassStats()
    log_context = build_log_context(org_id=org_id, correlation_id=correlation_id)
    threads = (
        db.query(EmailThread)
        .filter(EmailThread.org_id == org_id, EmailThread.status != ThreadStatus.PROCESSED.value)
        .order_by(EmailThread.updated_at.desc())
        .limit(limit or settings.AUTO_SYNC_AI_THREAD_LIMIT)
        .all()
    )

    for thread in threads:
        message = _newest_message(db, thread)
        if message is None:
            _mark_processed(db, thread)
            continue
        try:
            record = run_async(
                classification_service.classify_email(
                    db,
                    org_id=org_id,
                    email_id=message.id,
                    provider=provider,
                    encryption=encryption,
                    correlation_id=correlation_id,
                )
            )
        except classification_service.NoContentError:
            _mark_processed(db, thread)
            continue
        except classification_service.ModelUnavailableError:
            logger.warning("Model unavailable; ending AI pass", extra={**log_context, "action": "ai_pass_model_unavailable"})
            break
        except classification_service.ClassificationError as exc:
            logger.warning(
                "Thread classification failed",
                extra={**log_context, "action": "ai_pass_thread_failed", "code": exc.code},
            )
            continue

        stats.analyzed_threads += 1
        if record.category in LEAD_CATEGORIES:
            stats.leads_detected += 1
        if _notify_lead(db, thread, record):
            stats.notifications += 1
        _mark_processed(db, thread)

    logger.info(
        "AI pass completed",
        extra={
            **log_context,
            "action": "ai_pass_complete",
            "analyzed_threads": stats.analyzed_threads,
            "leads_detected": stats.leads_detected,
        },
    )
    return stats


# =============================================================================
# Cycle execution (worker thread)
# =============================================================================

@dataclass
class CycleOptions:
    force: bool = False
    respect_cooldown: bool = True
    manual: bool = False
    run_ai: bool = False
    calendar_days_back: int = settings.AUTO_CALENDAR_DAYS_BACK
    calendar_days_forward: int = settings.AUTO_CALENDAR_DAYS_FORWARD
    provider: AIProvider | None = None
    encryption: EncryptionService | None = None
    email_client_factory: EmailClientFactory = build_email_client
    calendar_client_factory: CalendarClientFactory = build_calendar_client


def _run_email_stage(db: Session, cycle: TenantCycle, options: CycleOptions, encryption: EncryptionService) -> None:
    accounts = list_email_accounts(db, cycle.org_id, manual=options.manual)
    if not accounts:
        cycle.email_error = ERROR_NO_EMAIL_ACCOUNTS
        cycle.email_done = True
        return

    for account in accounts:
        cycle.email_accounts.append(
            sync_one_email_account(
                db,
                account,
                force=options.force,
                respect_cooldown=options.respect_cooldown,
                encryption=encryption,
                client_factory=options.email_client_factory,
                correlation_id=cycle.correlation_id,
            )
        )

    if options.run_ai and options.provider is not None:
        cycle.ai = analyze_new_threads(
            db,
            cycle.org_id,
            provider=options.provider,
            encryption=encryption,
            correlation_id=cycle.correlation_id,
        )
    cycle.email_done = True


def _run_calendar_stage(db: Session, cycle: TenantCycle, options: CycleOptions, encryption: EncryptionService) -> None:
    accounts = list_calendar_accounts(db, cycle.org_id, manual=options.manual)
    if not accounts:
        cycle.calendar_error = ERROR_NO_CALENDAR_ACCOUNTS
        cycle.calendar_done = True
        return

    for account in accounts:
        cycle.calendar_accounts.append(
            sync_one_calendar_account(
                db,
                account,
                days_back=options.calendar_days_back,
                days_forward=options.calendar_days_forward,
                respect_cooldown=options.respect_cooldown,
                encryption=encryption,
                client_factory=options.calendar_client_factory,
                correlation_id=cycle.correlation_id,
            )
        )
    cycle.calendar_done = True


def execute_cycle(cycle: TenantCycle, options: CycleOptions) -> TenantCycle:
    """Run the cycle synchronously in the current thread with a fresh session."""
    encryption = options.encryption or get_encryption_service()
    with SessionLocal() as db:
        if cycle.include_email:
            try:
                _run_email_stage(db, cycle, options, encryption)
            except SQLAlchemyError:
                db.rollback()
                cycle.email_error = ERROR_STORE
                logger.exception(
                    "Email stage failed",
                    extra=build_log_context(org_id=cycle.org_id, correlation_id=cycle.correlation_id, action="email_stage_failed"),
                )
        if cycle.include_calendar:
            try:
                _run_calendar_stage(db, cycle, options, encryption)
            except SQLAlchemyError:
                db.rollback()
                cycle.calendar_error = ERROR_STORE
                logger.exception(
                    "Calendar stage failed",
                    extra=build_log_context(org_id=cycle.org_id, correlation_id=cycle.correlation_id, action="calendar_stage_failed"),
                )
    return cycle


async def run_tenant_cycle(
    org_id: UUID,
    *,
    mode: str,
    options: CycleOptions,
    timeout: float | None = None,
    enforce_cap: bool = False,
    include_email: bool = True,
    include_calendar: bool = True,
    registry: InFlightRegistry = in_flight,
) -> TenantCycle:
    """
    Mark the tenant in flight and run one cycle in a worker thread.

    Returns with ``skip_reason`` set when the tenant is busy (no provider
    calls), or ``timed_out`` when ``timeout`` expired first. The worker
    thread owns the in-flight mark and clears it when it finishes.
    """
    cycle = TenantCycle(
        org_id=org_id,
        mode=mode,
        include_email=include_email,
        include_calendar=include_calendar,
    )
    log_context = build_log_context(org_id=org_id, correlation_id=cycle.correlation_id, mode=mode)

    try:
        lease = registry.acquire(org_id, enforce_cap=enforce_cap)
    except TenantBusyError as exc:
        cycle.skip_reason = exc.reason
        logger.info("Tenant sync skipped", extra={**log_context, "action": f"sync_skip_{exc.reason}"})
        return cycle

    def work() -> TenantCycle:
        if not lease.claim():
            return cycle
        try:
            return execute_cycle(cycle, options)
        finally:
            lease.release()

    logger.info("Tenant sync started", extra={**log_context, "action": "tenant_sync_start"})
    try:
        await run_blocking(work, timeout=timeout)
    except TimeoutError:
        lease.release_if_unclaimed()
        cycle.timed_out = True
        logger.warning("Tenant sync timed out", extra={**log_context, "action": "tenant_sync_timeout"})
        return cycle
    except BaseException:
        lease.release_if_unclaimed()
        raise

    logger.info(
        "Tenant sync completed",
        extra={
            **log_context,
            "action": "tenant_sync_complete",
            "email_accounts": len(cycle.email_accounts),
            "calendar_accounts": len(cycle.calendar_accounts),
        },
    )
    return cycle


# =============================================================================
# Entry points
# =============================================================================

async def run_auto_sync(
    org_id: UUID,
    *,
    provider: AIProvider | None = None,
    registry: InFlightRegistry = in_flight,
    **overrides,
) -> TenantCycle:
    """Short time-boxed cycle over eligible accounts, cooldowns respected."""
    options = CycleOptions(run_ai=True, provider=provider, **overrides)
    return await run_tenant_cycle(
        org_id,
        mode=SyncMode.AUTO,
        options=options,
        timeout=settings.AUTO_SYNC_TIMEOUT_SECONDS,
        registry=registry,
    )


async def run_manual_sync(
    org_id: UUID,
    *,
    force: bool = False,
    registry: InFlightRegistry = in_flight,
    **overrides,
) -> TenantCycle:
    """Operator-triggered cycle over every connected account; ``force`` ignores cursors and cooldowns."""
    options = CycleOptions(
        force=force,
        respect_cooldown=not force,
        manual=True,
        calendar_days_back=settings.MANUAL_CALENDAR_DAYS_BACK,
        calendar_days_forward=settings.MANUAL_CALENDAR_DAYS_FORWARD,
        **overrides,
    )
    return await run_tenant_cycle(
        org_id,
        mode=SyncMode.MANUAL,
        options=options,
        timeout=settings.MANUAL_SYNC_TIMEOUT_SECONDS,
        registry=registry,
    )


# =============================================================================
# Response shaping
# =============================================================================

def _stage_error(cycle: TenantCycle, done: bool, stage_error: str | None) -> str | None:
    if cycle.busy:
        return ERROR_IN_PROGRESS
    if not done:
        return ERROR_TIMEOUT
    return stage_error


def auto_result(cycle: TenantCycle) -> dict:
    """Per-stage summary for the auto endpoint (camelCase keys)."""
    email_error = _stage_error(cycle, cycle.email_done, cycle.email_error)
    email: dict = {
        "synced": email_error is None,
        "newMessages": sum(o.new_messages for o in cycle.email_accounts),
        "newThreads": sum(o.new_threads for o in cycle.email_accounts),
        "failedAccounts": sum(1 for o in cycle.email_accounts if not o.success),
    }
    if cycle.ai is not None:
        email["aiAnalyzedThreads"] = cycle.ai.analyzed_threads
        email["leadsDetected"] = cycle.ai.leads_detected
        email["notifications"] = cycle.ai.notifications
    if email_error:
        email["error"] = email_error

    calendar_error = _stage_error(cycle, cycle.calendar_done, cycle.calendar_error)
    calendar: dict = {
        "synced": calendar_error is None,
        "newEvents": sum(o.new_events for o in cycle.calendar_accounts),
        "failedAccounts": sum(1 for o in cycle.calendar_accounts if not o.success),
    }
    if calendar_error:
        calendar["error"] = calendar_error
    return {"email": email, "calendar": calendar}


def _account_entry(outcome: AccountOutcome) -> dict:
    entry: dict = {
        "id": str(outcome.id),
        "email": outcome.email,
        "provider": outcome.provider,
        "success": outcome.success,
        "skipped": outcome.skipped,
    }
    if outcome.kind == AccountKind.EMAIL.value:
        entry["newMessages"] = outcome.new_messages
        entry["newThreads"] = outcome.new_threads
        entry["totalThreads"] = outcome.total_threads
    else:
        entry["newEvents"] = outcome.new_events
        entry["updatedEvents"] = outcome.updated_events
    if outcome.error:
        entry["error"] = outcome.error
    return entry


def _stage_errors(outcomes: list[AccountOutcome], stage_error: str | None) -> list[dict]:
    errors = [{"accountId": str(o.id), "error": o.error} for o in outcomes if o.error]
    if stage_error:
        errors.append({"error": stage_error})
    return errors


def manual_result(cycle: TenantCycle) -> dict:
    """Per-account results plus an aggregate summary for the manual endpoint."""
    email_error = _stage_error(cycle, cycle.email_done, None if cycle.email_error == ERROR_NO_EMAIL_ACCOUNTS else cycle.email_error)
    calendar_error = _stage_error(
        cycle, cycle.calendar_done, None if cycle.calendar_error == ERROR_NO_CALENDAR_ACCOUNTS else cycle.calendar_error
    )
    return {
        "email": {
            "accounts": [_account_entry(o) for o in cycle.email_accounts],
            "errors": _stage_errors(cycle.email_accounts, email_error),
        },
        "calendar": {
            "accounts": [_account_entry(o) for o in cycle.calendar_accounts],
            "errors": _stage_errors(cycle.calendar_accounts, calendar_error),
        },
        "summary": {
            "totalNewMessages": sum(o.new_messages for o in cycle.email_accounts),
            "totalNewThreads": sum(o.new_threads for o in cycle.email_accounts),
            "totalNewEvents": sum(o.new_events for o in cycle.calendar_accounts),
            "failedAccounts": sum(
                1 for o in cycle.email_accounts + cycle.calendar_accounts if not o.success
            ),
        },
    }


# =============================================================================
# Status
# =============================================================================

def _account_status(account, kind: AccountKind) -> dict:
    return {
        "id": str(account.id),
        "email": account.email,
        "provider": account.provider,
        "kind": kind.value,
        "status": account.status,
        "syncStatus": account.sync_status,
        "tokenStatus": account.token_status,
        "lastSyncedAt": account.last_synced_at.isoformat() if account.last_synced_at else None,
        "errorReason": account.error_reason,
    }


def overall_health(statuses: list[str]) -> str:
    if not statuses:
        return "no_accounts"
    connected = sum(1 for s in statuses if s == AccountStatus.CONNECTED.value)
    if connected == 0:
        return "unhealthy"
    if connected < len(statuses):
        return "degraded"
    return "healthy"


def get_sync_status(db: Session, org_id: UUID, *, registry: InFlightRegistry = in_flight) -> dict:
    email_accounts = db.query(EmailAccount).filter(EmailAccount.org_id == org_id).order_by(EmailAccount.created_at).all()
    calendar_accounts = (
        db.query(CalendarAccount).filter(CalendarAccount.org_id == org_id).order_by(CalendarAccount.created_at).all()
    )
    accounts = [_account_status(a, AccountKind.EMAIL) for a in email_accounts]
    accounts += [_account_status(a, AccountKind.CALENDAR) for a in calendar_accounts]
    # Paused and disconnected accounts do not count against health.
    tracked = [
        a["status"] for a in accounts if a["status"] not in MANUAL_SYNC_EXCLUDED_STATUSES
    ]
    return {
        "accounts": accounts,
        "overallHealth": overall_health(tracked),
        "syncInProgress": registry.is_active(org_id),
    }
