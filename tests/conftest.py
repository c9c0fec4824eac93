"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test (app code commits freely)
- JWT token minting for authenticated tests
- HTTPX AsyncClient with the get_db override
- In-memory fakes for the provider, calendar and model clients
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# Must be set before leadflow.core.config is imported.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DATA_ENCRYPTION_KEY", "")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.core.deps import COOKIE_NAME, get_db
from leadflow.core.security import create_session_token
from leadflow.db.base import Base
from leadflow.db.enums import AccountStatus, Provider
from leadflow.db.models import CalendarAccount, EmailAccount, Organization
from leadflow.db.session import configure_sqlite
from leadflow.main import app
from leadflow.services import sync_orchestrator
from leadflow.services.ai_provider import AIProvider, ChatResponse, ModelCallError
from leadflow.services.provider_client import ChangePage, ItemNotFoundError, ProviderClient, ProviderMessage
from leadflow.services.sync_registry import in_flight


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across threads via StaticPool."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


class _TestSession:
    """Stands in for SessionLocal() in code that opens its own session."""

    def __init__(self, db: Session):
        self.db = db

    def __enter__(self):
        return self.db

    def __exit__(self, exc_type, exc, tb):
        return False


@pytest.fixture(scope="function")
def cycle_session(db, monkeypatch):
    """Route sync cycles (worker threads) to the test session."""
    monkeypatch.setattr(sync_orchestrator, "SessionLocal", lambda: _TestSession(db))
    return db


@pytest.fixture(autouse=True)
def _reset_in_flight():
    in_flight.clear()
    yield
    in_flight.clear()


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Organization",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        ai_enabled=True,
    )
    db.add(org)
    db.commit()
    return org


def make_email_account(db: Session, org: Organization, **overrides) -> EmailAccount:
    values = {
        "org_id": org.id,
        "provider": Provider.GMAIL.value,
        "email": f"agent-{uuid.uuid4().hex[:6]}@example.com",
        "status": AccountStatus.CONNECTED.value,
        "access_token_encrypted": "token",
    }
    values.update(overrides)
    account = EmailAccount(**values)
    db.add(account)
    db.commit()
    return account


def make_calendar_account(db: Session, org: Organization, **overrides) -> CalendarAccount:
    values = {
        "org_id": org.id,
        "provider": Provider.GOOGLE_CALENDAR.value,
        "email": f"agent-{uuid.uuid4().hex[:6]}@example.com",
        "status": AccountStatus.CONNECTED.value,
        "access_token_encrypted": "token",
    }
    values.update(overrides)
    account = CalendarAccount(**values)
    db.add(account)
    db.commit()
    return account


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user_id: uuid.UUID
    org: Organization
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(test_org: Organization) -> TestAuth:
    """Create JWT token for a test user of test_org."""
    user_id = uuid.uuid4()
    token = create_session_token(user_id=user_id, org_id=test_org.id, role="admin")
    return TestAuth(user_id=user_id, org=test_org, token=token)


# =============================================================================
# Client Fixtures
# =============================================================================

def _override_db(db: Session):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient."""
    _override_db(db)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(db: Session, test_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient carrying the session cookie."""
    _override_db(db)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def internal_client(db: Session, test_org: Organization, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient authenticated as an internal caller for test_org."""
    from leadflow.core.config import settings

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "internal-secret")
    _override_db(db)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Internal-Secret": "internal-secret", "X-Org-Id": str(test_org.id)},
    ) as c:
        yield c
    app.dependency_overrides.clear()


# =============================================================================
# Provider fakes
# =============================================================================

def make_message(
    provider_message_id: str,
    *,
    thread_id: str = "t-1",
    subject: str = "Showing request for 12 Oak St",
    body: str = "Can we see the house on Saturday?",
    sender: str = "Jane Buyer <jane@example.com>",
    history_id: int | None = None,
    sent_at: datetime | None = None,
) -> ProviderMessage:
    return ProviderMessage(
        provider_message_id=provider_message_id,
        provider_thread_id=thread_id,
        subject=subject,
        from_address=sender,
        to="agent@example.com",
        body_type="text",
        body_content=body,
        snippet=body[:200],
        sent_at=sent_at or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
        history_id=history_id,
    )


class FakeEmailClient(ProviderClient):
    """
    Scripted provider.

    ``pages`` maps a starting cursor (None for a full sync) to the pages
    returned for it; page N+1 is reached through next_page_token "N+1".
    """

    provider = Provider.GMAIL.value
    numeric_cursor = True

    def __init__(self, pages=None, *, threads=None, messages=None, missing=None, error: Exception | None = None):
        self.pages: dict[str | None, list[ChangePage]] = pages or {}
        self.threads: dict[str, list[ProviderMessage]] = threads or {}
        self.messages: dict[str, ProviderMessage] = messages or {}
        self.missing: set[str] = set(missing or ())
        self.error = error
        self.calls: list[tuple] = []
        self.closed = False

    def list_changed_threads(self, cursor, page_token=None):
        self.calls.append(("list", cursor, page_token))
        if self.error:
            raise self.error
        pages = self.pages.get(cursor) or [ChangePage(cursor=cursor)]
        return pages[int(page_token or 0)]

    def get_thread(self, thread_id):
        self.calls.append(("thread", thread_id))
        if thread_id in self.missing:
            raise ItemNotFoundError(f"thread {thread_id} not found", provider=self.provider, status_code=404)
        return list(self.threads.get(thread_id, []))

    def get_message(self, message_id):
        self.calls.append(("message", message_id))
        if message_id in self.missing:
            raise ItemNotFoundError(f"message {message_id} not found", provider=self.provider, status_code=404)
        return self.messages[message_id]

    def close(self):
        self.closed = True


class FakeCalendarClient:
    provider = Provider.GOOGLE_CALENDAR.value

    def __init__(self, events=None, *, error: Exception | None = None):
        self.events = events or []
        self.error = error
        self.calls = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def list_events(self, time_min, time_max, page_token=None):
        self.calls += 1
        if self.error:
            raise self.error
        return {"events": list(self.events), "next_page_token": None}


def make_event(event_id: str, *, summary: str = "Showing", updated: datetime | None = None) -> dict:
    start = datetime(2026, 1, 10, 15, 0, tzinfo=timezone.utc)
    return {
        "id": event_id,
        "summary": summary,
        "description": "",
        "location": "12 Oak St",
        "start": start,
        "end": start + timedelta(hours=1),
        "is_all_day": False,
        "status": "confirmed",
        "attendee_count": 2,
        "html_link": "https://calendar.example/e",
        "updated": updated or datetime(2026, 1, 1, tzinfo=timezone.utc),
    }


# =============================================================================
# Model fakes
# =============================================================================

@dataclass
class FakeModel(AIProvider):
    """
    Returns queued completions per model name; a queued Exception is raised
    as a ModelCallError.
    """
    responses: dict[str, list] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    async def chat(self, messages, *, model=None, temperature=0.3, max_tokens=1000, json_mode=False):
        model = model or "fake"
        self.calls.append(model)
        queue = self.responses.get(model) or []
        if not queue:
            raise ModelCallError("no response queued", model=model)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise ModelCallError(str(item), model=model)
        return ChatResponse(content=item, prompt_tokens=1, completion_tokens=1, total_tokens=2, model=model)
