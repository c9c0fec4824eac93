"""
Per-tenant sync timers.

Each tenant gets an email timer and a calendar timer on the running event
loop. Ticks share the process-wide in-flight registry with the HTTP sync
endpoints, so a tenant never runs two cycles at once and no more than
``SYNC_MAX_CONCURRENT_TENANTS`` tenants sync concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.core.async_utils import run_blocking
from leadflow.core.config import settings
from leadflow.core.structured_logging import build_log_context
from leadflow.db.enums import AccountKind
from leadflow.services import sync_orchestrator
from leadflow.services.ai_provider import get_configured_provider
from leadflow.services.sync_orchestrator import CycleOptions, SyncMode, TenantCycle
from leadflow.services.sync_registry import InFlightRegistry, in_flight

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _default_options() -> CycleOptions:
    return CycleOptions(run_ai=True, provider=get_configured_provider())


def _has_accounts(org_id: UUID, kind: AccountKind) -> bool:
    with sync_orchestrator.SessionLocal() as db:
        if kind == AccountKind.EMAIL:
            return bool(sync_orchestrator.list_email_accounts(db, org_id))
        return bool(sync_orchestrator.list_calendar_accounts(db, org_id))


class SyncScheduler:
    """Owns the timers; the in-flight registry and clock are injected."""

    def __init__(
        self,
        *,
        registry: InFlightRegistry = in_flight,
        email_interval_minutes: int | None = None,
        calendar_interval_minutes: int | None = None,
        initial_delay_seconds: int | None = None,
        jitter_seconds: int | None = None,
        tick_timeout_seconds: float | None = None,
        busy_retry_seconds: float | None = None,
        busy_max_retries: int | None = None,
        sleep: Sleep = asyncio.sleep,
        options_factory: Callable[[], CycleOptions] = _default_options,
    ):
        self.registry = registry
        self.email_interval_minutes = email_interval_minutes or settings.EMAIL_SYNC_INTERVAL_MINUTES
        self.calendar_interval_minutes = calendar_interval_minutes or settings.CALENDAR_SYNC_INTERVAL_MINUTES
        self.initial_delay_seconds = (
            settings.SYNC_INITIAL_DELAY_SECONDS if initial_delay_seconds is None else initial_delay_seconds
        )
        self.jitter_seconds = settings.SYNC_JITTER_SECONDS if jitter_seconds is None else jitter_seconds
        self.tick_timeout_seconds = tick_timeout_seconds or settings.MANUAL_SYNC_TIMEOUT_SECONDS
        self.busy_retry_seconds = (
            settings.SYNC_BUSY_RETRY_SECONDS if busy_retry_seconds is None else busy_retry_seconds
        )
        self.busy_max_retries = settings.SYNC_BUSY_MAX_RETRIES if busy_max_retries is None else busy_max_retries
        self._sleep = sleep
        self._options_factory = options_factory
        self._timers: dict[UUID, list[asyncio.Task]] = {}
        self._running = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initial_delay_for(self, org_id: UUID) -> float:
        """Deterministic per-tenant spread so tenants don't all fire at startup."""
        if self.jitter_seconds <= 0:
            return float(self.initial_delay_seconds)
        return float(self.initial_delay_seconds + org_id.int % self.jitter_seconds)

    def start_tenant(self, org_id: UUID) -> None:
        """Schedule both timers for ``org_id``, replacing any existing ones."""
        self.stop_tenant(org_id)
        delay = self.initial_delay_for(org_id)
        self._timers[org_id] = [
            asyncio.create_task(
                self._run_timer(org_id, AccountKind.EMAIL, self.email_interval_minutes * 60, delay),
                name=f"sync-email-{org_id}",
            ),
            asyncio.create_task(
                self._run_timer(org_id, AccountKind.CALENDAR, self.calendar_interval_minutes * 60, delay),
                name=f"sync-calendar-{org_id}",
            ),
        ]
        self._running = True
        logger.info(
            "Tenant sync scheduled",
            extra=build_log_context(org_id=org_id, action="sync_schedule_start", initial_delay_seconds=int(delay)),
        )

    def stop_tenant(self, org_id: UUID) -> None:
        tasks = self._timers.pop(org_id, [])
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Tenant sync stopped", extra=build_log_context(org_id=org_id, action="sync_schedule_stop"))

    def is_scheduled(self, org_id: UUID) -> bool:
        return org_id in self._timers

    def start_all(self, db: Session) -> int:
        """Start timers for every tenant with an eligible account. Returns the count."""
        try:
            org_ids = sync_orchestrator.list_tenants_with_accounts(db)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not enumerate tenants for sync", extra={"action": "sync_schedule_enumerate_failed"})
            return 0
        for org_id in org_ids:
            self.start_tenant(org_id)
        self._running = True
        logger.info("Sync scheduler started", extra={"action": "sync_scheduler_start", "tenants": len(org_ids)})
        return len(org_ids)

    def stop_all(self) -> None:
        for org_id in list(self._timers):
            self.stop_tenant(org_id)
        self.registry.clear()
        self._running = False
        logger.info("Sync scheduler stopped", extra={"action": "sync_scheduler_stop"})

    def status(self) -> dict:
        return {
            "running": self._running,
            "active_syncs": [str(org_id) for org_id in self.registry.active_tenants()],
            "scheduled_tenants": sorted(str(org_id) for org_id in self._timers),
            "max_concurrent": self.registry.max_concurrent,
            "email_interval_minutes": self.email_interval_minutes,
            "calendar_interval_minutes": self.calendar_interval_minutes,
        }

    # -------------------------------------------------------------------------
    # Ticks
    # -------------------------------------------------------------------------

    async def tick(self, org_id: UUID, kind: AccountKind = AccountKind.EMAIL) -> TenantCycle | None:
        """
        One timer firing. Returns None when skipped before the in-flight
        check (no eligible accounts); a busy tenant returns a cycle with
        ``skip_reason`` set. Neither path calls a provider.
        """
        log_context = build_log_context(org_id=org_id, kind=kind.value)
        if not await run_blocking(lambda: _has_accounts(org_id, kind)):
            logger.info("Tenant has no eligible accounts", extra={**log_context, "action": "sync_skip_no_accounts"})
            return None

        return await sync_orchestrator.run_tenant_cycle(
            org_id,
            mode=SyncMode.SCHEDULED,
            options=self._options_factory(),
            timeout=self.tick_timeout_seconds,
            enforce_cap=True,
            include_email=kind == AccountKind.EMAIL,
            include_calendar=kind == AccountKind.CALENDAR,
            registry=self.registry,
        )

    async def _run_timer(self, org_id: UUID, kind: AccountKind, interval_seconds: float, first_delay: float) -> None:
        await self._sleep(first_delay)
        busy_retries = 0
        while True:
            cycle = None
            try:
                cycle = await self.tick(org_id, kind)
            except Exception:
                # Next tick retries.
                logger.exception(
                    "Scheduled sync tick failed",
                    extra=build_log_context(org_id=org_id, kind=kind.value, action="sync_tick_failed"),
                )
            # The tenant's other timer (or a manual sync) holds the mark; try again shortly.
            if cycle is not None and cycle.skip_reason == "concurrent" and busy_retries < self.busy_max_retries:
                busy_retries += 1
                logger.info(
                    "Tenant busy; retrying tick",
                    extra=build_log_context(
                        org_id=org_id, kind=kind.value, action="sync_tick_busy_retry", attempt=busy_retries
                    ),
                )
                await self._sleep(self.busy_retry_seconds)
                continue
            busy_retries = 0
            await self._sleep(interval_seconds)


sync_scheduler = SyncScheduler()
