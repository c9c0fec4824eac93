"""Tests for incremental email account sync and calendar window sync."""

from datetime import datetime, timezone

import httpx
import pytest

from leadflow.db.enums import AccountStatus, Provider, SyncStatus, TokenStatus
from leadflow.db.models import CalendarEvent, EmailMessage, EmailThread
from leadflow.services.account_sync_service import count_threads, find_thread, sync_email_account
from leadflow.services.calendar_sync_service import sync_calendar_account
from leadflow.services.gmail_service import GmailClient
from leadflow.services.graph_service import GraphClient
from leadflow.services.provider_client import (
    AuthError,
    ChangePage,
    HistoryExpiredError,
    ProviderTransientError,
)
from tests.conftest import (
    FakeCalendarClient,
    FakeEmailClient,
    make_calendar_account,
    make_email_account,
    make_event,
    make_message,
)


def _initial_client() -> FakeEmailClient:
    return FakeEmailClient(
        {None: [ChangePage(thread_ids=["t1", "t2"], checkpoint="100", cursor="100")]},
        threads={
            "t1": [
                make_message("m1", thread_id="t1", subject="Offer on 12 Oak"),
                make_message("m2", thread_id="t1", subject="Re: Offer on 12 Oak", sender="agent@example.com"),
            ],
            "t2": [make_message("m3", thread_id="t2", subject="Listing inquiry")],
        },
    )


def test_initial_sync_stores_threads_and_sets_cursor(db, test_org):
    account = make_email_account(db, test_org)

    result = sync_email_account(db, account, _initial_client())

    assert result.new_messages == 3
    assert result.new_threads == 2
    assert account.history_id == 100
    assert account.sync_status == SyncStatus.READY.value
    assert account.last_synced_at is not None
    assert count_threads(db, account) == 2

    thread = find_thread(db, org_id=test_org.id, account_id=account.id, index="offer on 12 oak")
    assert thread.message_count == 2
    assert "jane@example.com" in thread.participants_index
    assert "agent@example.com" in thread.participants_index


def test_resync_over_stored_range_is_a_no_op(db, test_org):
    account = make_email_account(db, test_org)
    sync_email_account(db, account, _initial_client())

    result = sync_email_account(db, account, _initial_client(), force_full=True)

    assert result.new_messages == 0
    assert result.skipped_duplicates == 3
    assert db.query(EmailMessage).filter(EmailMessage.org_id == test_org.id).count() == 3
    assert db.query(EmailThread).filter(EmailThread.org_id == test_org.id).count() == 2


def test_incremental_sync_from_history_cursor(db, test_org):
    account = make_email_account(db, test_org, history_id=100)
    messages = {
        "m10": make_message("m10", thread_id="a", subject="Showing Saturday"),
        "m11": make_message("m11", thread_id="a", subject="RE: Showing Saturday"),
        "m12": make_message("m12", thread_id="b", subject="Price question"),
    }
    client = FakeEmailClient(
        {"100": [ChangePage(message_ids=["m10", "m11", "m12"], checkpoint="104", cursor="110")]},
        messages=messages,
    )

    result = sync_email_account(db, account, client)

    assert ("list", "100", None) in client.calls
    assert result.new_messages == 3
    assert result.new_threads == 2
    assert account.history_id == 110


def test_known_message_ids_are_not_fetched(db, test_org):
    account = make_email_account(db, test_org)
    sync_email_account(db, account, _initial_client())
    account.history_id = 100
    db.commit()

    client = FakeEmailClient(
        {"100": [ChangePage(message_ids=["m1", "m20"], checkpoint="105", cursor="105")]},
        messages={"m20": make_message("m20", subject="Listing inquiry")},
    )
    result = sync_email_account(db, account, client)

    assert ("message", "m1") not in client.calls
    assert result.new_messages == 1
    assert result.new_threads == 0


def test_numeric_cursor_never_moves_backwards(db, test_org):
    account = make_email_account(db, test_org, history_id=200)
    client = FakeEmailClient({"200": [ChangePage(checkpoint="150", cursor="150")]})

    sync_email_account(db, account, client)

    assert account.history_id == 200


def test_page_cap_advances_only_to_covered_checkpoint(db, test_org):
    account = make_email_account(db, test_org, history_id=100)
    client = FakeEmailClient(
        {
            "100": [
                ChangePage(message_ids=["m1"], checkpoint="101", next_page_token="1"),
                ChangePage(message_ids=["m2"], checkpoint="102", cursor="120"),
            ]
        },
        messages={"m1": make_message("m1"), "m2": make_message("m2")},
    )

    result = sync_email_account(db, account, client, max_pages=1)

    assert result.truncated is True
    assert account.history_id == 101


def test_expired_cursor_is_cleared_for_next_full_sync(db, test_org):
    account = make_email_account(db, test_org, history_id=100)
    client = FakeEmailClient(error=HistoryExpiredError("gone", provider="gmail", status_code=404))

    with pytest.raises(HistoryExpiredError):
        sync_email_account(db, account, client)

    db.refresh(account)
    assert account.history_id is None
    assert account.status == AccountStatus.CONNECTED.value
    assert account.sync_status == SyncStatus.ERROR.value


def test_auth_error_marks_account_action_needed(db, test_org):
    account = make_email_account(db, test_org, history_id=100)
    client = FakeEmailClient(error=AuthError("invalid_grant", provider="gmail", status_code=401))

    with pytest.raises(AuthError):
        sync_email_account(db, account, client)

    db.refresh(account)
    assert account.status == AccountStatus.ACTION_NEEDED.value
    assert account.token_status == TokenStatus.EXPIRED.value
    assert account.history_id == 100
    assert "invalid_grant" in account.error_reason


def test_transient_error_keeps_account_connected(db, test_org):
    account = make_email_account(db, test_org, history_id=100)
    client = FakeEmailClient(error=ProviderTransientError("429", provider="gmail", status_code=429))

    with pytest.raises(ProviderTransientError):
        sync_email_account(db, account, client)

    db.refresh(account)
    assert account.status == AccountStatus.CONNECTED.value
    assert account.history_id == 100


def test_message_deleted_after_listing_is_skipped(db, test_org):
    account = make_email_account(db, test_org, history_id=100)

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/history"):
            return httpx.Response(
                200,
                json={
                    "history": [
                        {"id": "101", "messagesAdded": [{"message": {"id": "good"}}, {"message": {"id": "gone"}}]}
                    ],
                    "historyId": "105",
                },
            )
        if path.endswith("/messages/good"):
            return httpx.Response(
                200,
                json={
                    "id": "good",
                    "threadId": "t-good",
                    "payload": {"headers": [{"name": "Subject", "value": "Showing Saturday"}]},
                    "internalDate": "1767614400000",
                },
            )
        return httpx.Response(404, json={"error": {"code": 404, "message": "Requested entity was not found."}})

    client = GmailClient("tok", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    result = sync_email_account(db, account, client)

    assert result.new_messages == 1
    assert result.skipped_missing == 1
    db.refresh(account)
    assert account.status == AccountStatus.CONNECTED.value
    assert account.sync_status == SyncStatus.READY.value
    assert account.history_id == 105
    stored = db.query(EmailMessage).filter(EmailMessage.org_id == test_org.id).all()
    assert [m.provider_message_id for m in stored] == ["good"]


def test_thread_deleted_after_listing_is_skipped(db, test_org):
    account = make_email_account(db, test_org)
    client = FakeEmailClient(
        {None: [ChangePage(thread_ids=["t1", "t-gone"], checkpoint="100", cursor="100")]},
        threads={"t1": [make_message("m1", thread_id="t1")]},
        missing={"t-gone"},
    )

    result = sync_email_account(db, account, client)

    assert result.new_messages == 1
    assert result.skipped_missing == 1
    assert account.history_id == 100


def _graph_delta_client(total_pages: int, per_page: int) -> tuple[GraphClient, list[str]]:
    requested: list[str] = []
    base = "https://graph.microsoft.com/v1.0/me/messages/delta"

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        index = int(request.url.params.get("$skiptoken") or 0)
        payload = {
            "value": [
                {"id": f"msg-{index}-{n}", "conversationId": f"c-{index}-{n}", "subject": f"Listing {index}-{n}"}
                for n in range(per_page)
            ]
        }
        if index + 1 < total_pages:
            payload["@odata.nextLink"] = f"{base}?$skiptoken={index + 1}"
        else:
            payload["@odata.deltaLink"] = f"{base}?$deltatoken=final"
        return httpx.Response(200, json=payload)

    client = GraphClient("tok", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    return client, requested


def test_capped_graph_sync_resumes_from_next_link(db, test_org):
    account = make_email_account(db, test_org, provider=Provider.OUTLOOK.value)
    client, requested = _graph_delta_client(total_pages=5, per_page=2)

    first = sync_email_account(db, account, client, max_items=4)

    assert first.truncated is True
    assert first.new_messages == 4
    assert account.delta_token is None
    assert account.delta_resume_link.endswith("$skiptoken=2")

    second = sync_email_account(db, account, client, max_items=4)

    assert second.resumed is True
    assert second.new_messages == 4
    assert "skiptoken=2" in requested[2]
    assert account.delta_resume_link.endswith("$skiptoken=4")

    third = sync_email_account(db, account, client, max_items=4)

    assert third.truncated is False
    assert third.new_messages == 2
    assert account.delta_token == "final"
    assert account.delta_resume_link is None
    assert db.query(EmailMessage).filter(EmailMessage.org_id == test_org.id).count() == 10


def test_force_full_ignores_graph_resume_link(db, test_org):
    account = make_email_account(
        db,
        test_org,
        provider=Provider.OUTLOOK.value,
        delta_resume_link="https://graph.microsoft.com/v1.0/me/messages/delta?$skiptoken=1",
    )
    client, requested = _graph_delta_client(total_pages=2, per_page=1)

    result = sync_email_account(db, account, client, force_full=True)

    assert result.resumed is False
    assert "skiptoken" not in requested[0]
    assert account.delta_token == "final"
    assert account.delta_resume_link is None


# =============================================================================
# Calendar
# =============================================================================

def test_calendar_sync_inserts_then_updates_changed_events(db, test_org):
    account = make_calendar_account(db, test_org)

    first = sync_calendar_account(
        db, account, FakeCalendarClient([make_event("e1"), make_event("e2")]), days_back=7, days_forward=30
    )
    assert first == {"new_events": 2, "updated_events": 0}

    newer = datetime(2026, 1, 3, tzinfo=timezone.utc)
    second = sync_calendar_account(
        db,
        account,
        FakeCalendarClient([make_event("e1", summary="Moved showing", updated=newer), make_event("e2")]),
        days_back=7,
        days_forward=30,
    )

    assert second == {"new_events": 0, "updated_events": 1}
    assert db.query(CalendarEvent).filter(CalendarEvent.org_id == test_org.id).count() == 2
    event = db.query(CalendarEvent).filter(CalendarEvent.provider_event_id == "e1").one()
    assert event.title_enc == "Moved showing"
    assert account.last_synced_at is not None


def test_calendar_auth_error_marks_action_needed(db, test_org):
    account = make_calendar_account(db, test_org)

    with pytest.raises(AuthError):
        sync_calendar_account(
            db, account, FakeCalendarClient(error=AuthError("revoked")), days_back=7, days_forward=30
        )

    db.refresh(account)
    assert account.status == AccountStatus.ACTION_NEEDED.value
    assert account.token_status == TokenStatus.EXPIRED.value
