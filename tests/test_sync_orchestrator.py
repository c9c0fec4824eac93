"""Tests for tenant sync cycles (fault isolation, cooldown, in-flight, timeout, AI pass)."""

import asyncio
import json
import threading
from datetime import timedelta

import pytest

from leadflow.core.config import settings
from leadflow.db.enums import AccountStatus, ThreadStatus
from leadflow.db.models import EmailThread, Notification
from leadflow.services import sync_orchestrator
from leadflow.services.provider_client import AuthError, ChangePage
from leadflow.services.sync_registry import in_flight
from leadflow.utils.datetime_parsing import utcnow
from tests.conftest import (
    FakeCalendarClient,
    FakeEmailClient,
    FakeModel,
    make_calendar_account,
    make_email_account,
    make_event,
    make_message,
)


def _healthy_client() -> FakeEmailClient:
    return FakeEmailClient(
        {None: [ChangePage(thread_ids=["t1"], checkpoint="50", cursor="50")]},
        threads={"t1": [make_message("m1", thread_id="t1")]},
    )


def _factory(clients: dict):
    """Client factory keyed by account email; records which accounts were built."""
    built = []

    def build(account, *, encryption=None):
        built.append(account.email)
        client = clients[account.email]
        if isinstance(client, Exception):
            raise client
        return client

    build.built = built
    return build


@pytest.mark.asyncio
async def test_failing_account_does_not_block_others(cycle_session, test_org):
    db = cycle_session
    good = make_email_account(db, test_org, email="good@example.com")
    bad = make_email_account(db, test_org, email="bad@example.com", history_id=7)
    factory = _factory(
        {
            "good@example.com": _healthy_client(),
            "bad@example.com": FakeEmailClient(error=AuthError("token revoked", provider="gmail", status_code=401)),
        }
    )

    cycle = await sync_orchestrator.run_manual_sync(
        test_org.id,
        email_client_factory=factory,
        calendar_client_factory=_factory({}),
    )
    result = sync_orchestrator.manual_result(cycle)

    assert cycle.completed
    by_email = {entry["email"]: entry for entry in result["email"]["accounts"]}
    assert by_email["good@example.com"]["success"] is True
    assert by_email["good@example.com"]["newMessages"] == 1
    assert by_email["bad@example.com"]["success"] is False
    assert "token revoked" in by_email["bad@example.com"]["error"]
    assert result["email"]["errors"] == [{"accountId": str(bad.id), "error": by_email["bad@example.com"]["error"]}]
    assert result["summary"]["failedAccounts"] == 1

    db.refresh(good)
    db.refresh(bad)
    assert good.status == AccountStatus.CONNECTED.value
    assert good.history_id == 50
    assert bad.status == AccountStatus.ACTION_NEEDED.value
    assert not in_flight.is_active(test_org.id)


@pytest.mark.asyncio
async def test_client_build_failure_is_recorded(cycle_session, test_org):
    account = make_email_account(cycle_session, test_org, email="a@example.com")
    factory = _factory({"a@example.com": AuthError("No access token stored for account")})

    cycle = await sync_orchestrator.run_auto_sync(test_org.id, email_client_factory=factory)

    outcome = cycle.email_accounts[0]
    assert outcome.success is False
    cycle_session.refresh(account)
    assert account.status == AccountStatus.ACTION_NEEDED.value


@pytest.mark.asyncio
async def test_recently_synced_account_is_skipped(cycle_session, test_org):
    make_email_account(cycle_session, test_org, email="a@example.com", last_synced_at=utcnow() - timedelta(minutes=2))
    factory = _factory({"a@example.com": _healthy_client()})

    cycle = await sync_orchestrator.run_auto_sync(test_org.id, email_client_factory=factory)

    assert factory.built == []
    assert cycle.email_accounts[0].skipped is True
    assert cycle.email_accounts[0].success is True
    assert sync_orchestrator.auto_result(cycle)["email"]["synced"] is True


@pytest.mark.asyncio
async def test_forced_manual_sync_ignores_cooldown_and_cursor(cycle_session, test_org):
    make_email_account(
        cycle_session,
        test_org,
        email="a@example.com",
        history_id=40,
        last_synced_at=utcnow() - timedelta(minutes=1),
    )
    client = _healthy_client()
    factory = _factory({"a@example.com": client})

    cycle = await sync_orchestrator.run_manual_sync(
        test_org.id, force=True, email_client_factory=factory, calendar_client_factory=_factory({})
    )

    assert factory.built == ["a@example.com"]
    assert client.calls[0] == ("list", None, None)
    assert cycle.email_accounts[0].new_messages == 1


@pytest.mark.asyncio
async def test_manual_sync_includes_errored_accounts_but_not_paused(cycle_session, test_org):
    make_calendar_account(cycle_session, test_org, email="cal@example.com", status=AccountStatus.ERROR.value)
    make_calendar_account(cycle_session, test_org, email="paused@example.com", status=AccountStatus.PAUSED.value)
    calendar = FakeCalendarClient([make_event("e1")])

    cycle = await sync_orchestrator.run_manual_sync(
        test_org.id,
        email_client_factory=_factory({}),
        calendar_client_factory=_factory({"cal@example.com": calendar}),
    )
    result = sync_orchestrator.manual_result(cycle)

    assert [entry["email"] for entry in result["calendar"]["accounts"]] == ["cal@example.com"]
    assert result["summary"]["totalNewEvents"] == 1
    # No email accounts is not an error for the manual report.
    assert result["email"]["errors"] == []


@pytest.mark.asyncio
async def test_busy_tenant_is_rejected_without_provider_calls(cycle_session, test_org):
    make_email_account(cycle_session, test_org, email="a@example.com")
    factory = _factory({"a@example.com": _healthy_client()})
    lease = in_flight.acquire(test_org.id)

    cycle = await sync_orchestrator.run_auto_sync(test_org.id, email_client_factory=factory)

    assert cycle.busy
    assert cycle.skip_reason == "concurrent"
    assert factory.built == []
    result = sync_orchestrator.auto_result(cycle)
    assert result["email"]["error"] == "sync_in_progress"
    assert result["calendar"]["error"] == "sync_in_progress"
    lease.release()


@pytest.mark.asyncio
async def test_no_accounts_reported_per_stage(cycle_session, test_org):
    cycle = await sync_orchestrator.run_auto_sync(test_org.id)
    result = sync_orchestrator.auto_result(cycle)

    assert result["email"] == {
        "synced": False,
        "newMessages": 0,
        "newThreads": 0,
        "failedAccounts": 0,
        "error": "No connected email accounts found",
    }
    assert result["calendar"]["error"] == "No connected calendar accounts found"


class _BlockingClient(FakeEmailClient):
    def __init__(self, gate: threading.Event):
        super().__init__({None: [ChangePage(cursor="9")]})
        self.gate = gate

    def list_changed_threads(self, cursor, page_token=None):
        self.gate.wait(timeout=5)
        return super().list_changed_threads(cursor, page_token)


@pytest.mark.asyncio
async def test_timeout_returns_partial_result_and_releases_tenant_later(cycle_session, test_org, monkeypatch):
    monkeypatch.setattr(settings, "AUTO_SYNC_TIMEOUT_SECONDS", 0.2)
    make_email_account(cycle_session, test_org, email="slow@example.com")
    gate = threading.Event()
    factory = _factory({"slow@example.com": _BlockingClient(gate)})

    cycle = await sync_orchestrator.run_auto_sync(test_org.id, email_client_factory=factory)

    assert cycle.timed_out is True
    assert sync_orchestrator.auto_result(cycle)["email"]["error"] == "timeout"
    # The abandoned cycle still holds the tenant until it finishes.
    assert in_flight.is_active(test_org.id)

    gate.set()
    for _ in range(100):
        if not in_flight.is_active(test_org.id):
            break
        await asyncio.sleep(0.05)
    assert not in_flight.is_active(test_org.id)


@pytest.mark.asyncio
async def test_auto_sync_runs_ai_pass_and_notifies_once(cycle_session, test_org, monkeypatch):
    monkeypatch.setattr(settings, "AI_PRIMARY_MODEL", "primary")
    monkeypatch.setattr(settings, "AI_FALLBACK_MODEL", "fallback")
    db = cycle_session
    make_email_account(db, test_org, email="a@example.com")
    completion = json.dumps({"category": "hot_lead", "priorityScore": 92, "leadScore": 88, "confidenceScore": 0.9})
    model = FakeModel(responses={"primary": [completion]})

    cycle = await sync_orchestrator.run_auto_sync(
        test_org.id,
        provider=model,
        email_client_factory=_factory({"a@example.com": _healthy_client()}),
    )
    result = sync_orchestrator.auto_result(cycle)

    assert result["email"]["aiAnalyzedThreads"] == 1
    assert result["email"]["leadsDetected"] == 1
    assert result["email"]["notifications"] == 1
    thread = db.query(EmailThread).filter(EmailThread.org_id == test_org.id).one()
    assert thread.status == ThreadStatus.PROCESSED.value
    notification = db.query(Notification).filter(Notification.org_id == test_org.id).one()
    assert notification.type == "email_lead"
    assert notification.priority == "high"

    # Processed threads are not analyzed again.
    stats = sync_orchestrator.analyze_new_threads(
        db, test_org.id, provider=model, encryption=sync_orchestrator.get_encryption_service()
    )
    assert stats.analyzed_threads == 0
    assert model.calls == ["primary"]


@pytest.mark.asyncio
async def test_model_outage_leaves_threads_for_next_pass(cycle_session, test_org, monkeypatch):
    monkeypatch.setattr(settings, "AI_PRIMARY_MODEL", "primary")
    monkeypatch.setattr(settings, "AI_FALLBACK_MODEL", "fallback")
    db = cycle_session
    make_email_account(db, test_org, email="a@example.com")

    cycle = await sync_orchestrator.run_auto_sync(
        test_org.id,
        provider=FakeModel(),
        email_client_factory=_factory({"a@example.com": _healthy_client()}),
    )

    assert cycle.ai.analyzed_threads == 0
    thread = db.query(EmailThread).filter(EmailThread.org_id == test_org.id).one()
    assert thread.status == ThreadStatus.NEW.value


def test_sync_status_health(db, test_org):
    make_email_account(db, test_org, email="a@example.com")
    make_calendar_account(db, test_org, email="b@example.com", status=AccountStatus.ACTION_NEEDED.value)
    make_email_account(db, test_org, email="c@example.com", status=AccountStatus.PAUSED.value)

    status = sync_orchestrator.get_sync_status(db, test_org.id)

    assert len(status["accounts"]) == 3
    assert status["overallHealth"] == "degraded"
    assert status["syncInProgress"] is False


def test_overall_health():
    assert sync_orchestrator.overall_health([]) == "no_accounts"
    assert sync_orchestrator.overall_health(["connected"]) == "healthy"
    assert sync_orchestrator.overall_health(["error", "action_needed"]) == "unhealthy"
