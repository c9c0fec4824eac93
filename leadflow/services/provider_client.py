"""Mail provider client abstraction.

Gmail and Microsoft Graph implement the same three calls; responses are parsed
into ``ProviderMessage`` at this boundary so the sync worker never sees raw
provider payloads.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from leadflow.core.encryption import EncryptionService, get_encryption_service

logger = logging.getLogger(__name__)

ACCESS_TOKEN_CONTEXT = "oauth:access_token"


# =============================================================================
# Errors
# =============================================================================

class ProviderError(Exception):
    """Unrecoverable provider failure for one account."""

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AuthError(ProviderError):
    """Expired, revoked or missing credentials."""


class MalformedResponseError(ProviderError):
    """Provider returned something we cannot parse."""


class ItemNotFoundError(ProviderError):
    """A listed message or thread no longer exists (deleted since it was listed)."""


class ProviderTransientError(ProviderError):
    """Rate limit, timeout or 5xx. Retried on the next tick."""


class HistoryExpiredError(ProviderTransientError):
    """Stored cursor is no longer accepted; the next run must be a full sync."""


# =============================================================================
# Parsed payloads
# =============================================================================

@dataclass
class ProviderMessage:
    """A provider message normalized for persistence."""

    provider_message_id: str
    provider_thread_id: str | None = None
    subject: str = ""
    from_address: str = ""
    to: str = ""
    cc: str = ""
    bcc: str = ""
    body_type: str = "text"  # text | html
    body_content: str = ""
    snippet: str = ""
    attachments: list[dict] = field(default_factory=list)
    sent_at: datetime | None = None
    is_read: bool = False
    history_id: int | None = None


@dataclass
class ChangePage:
    """
    One page of changes since a cursor.

    A page carries ids to hydrate (``thread_ids`` / ``message_ids``) and/or
    already-hydrated ``messages``. ``checkpoint`` covers only this page's items;
    ``cursor`` is the provider position valid once no further pages remain.
    """

    thread_ids: list[str] = field(default_factory=list)
    message_ids: list[str] = field(default_factory=list)
    messages: list[ProviderMessage] = field(default_factory=list)
    next_page_token: str | None = None
    checkpoint: str | None = None
    cursor: str | None = None

    @property
    def item_count(self) -> int:
        return len(self.thread_ids) + len(self.message_ids) + len(self.messages)


class ProviderClient(ABC):
    """Abstract base class for mail providers."""

    provider: str = ""
    # Numeric cursors (Gmail historyId) only ever move forward; opaque ones are replaced.
    numeric_cursor: bool = False
    # Page tokens outlive the run (Graph nextLink URLs).
    resumable_pages: bool = False

    @abstractmethod
    def list_changed_threads(self, cursor: str | None, page_token: str | None = None) -> ChangePage:
        """List changes since ``cursor``; ``None`` lists recent mail for a full sync."""

    @abstractmethod
    def get_thread(self, thread_id: str) -> list[ProviderMessage]:
        """Fetch every message of a thread."""

    @abstractmethod
    def get_message(self, message_id: str) -> ProviderMessage:
        """Fetch one message."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


# =============================================================================
# HTTP helpers
# =============================================================================

def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or "unknown error"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "unknown error")
    if isinstance(error, str):
        return payload.get("error_description") or error
    return "unknown error"


def raise_for_provider_status(
    response: httpx.Response,
    *,
    provider: str,
    expired_statuses: tuple[int, ...] = (),
) -> None:
    """Map an HTTP error response onto the provider error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    detail = _error_detail(response)
    message = f"{provider} API error {status}: {detail}"
    if status in expired_statuses:
        raise HistoryExpiredError(message, provider=provider, status_code=status)
    if status in (401, 403) or "invalid_grant" in detail:
        raise AuthError(message, provider=provider, status_code=status)
    if status == 429 or status >= 500:
        raise ProviderTransientError(message, provider=provider, status_code=status)
    if status == 404:
        raise ItemNotFoundError(message, provider=provider, status_code=status)
    raise ProviderError(message, provider=provider, status_code=status)


def request_json(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    provider: str,
    access_token: str,
    params: dict | None = None,
    expired_statuses: tuple[int, ...] = (),
) -> dict:
    """Send one request and return the decoded JSON object."""
    try:
        response = client.request(
            method,
            url,
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
        )
    except httpx.TimeoutException as exc:
        raise ProviderTransientError(f"{provider} request timed out", provider=provider) from exc
    except httpx.TransportError as exc:
        raise ProviderTransientError(f"{provider} network error: {exc}", provider=provider) from exc

    raise_for_provider_status(response, provider=provider, expired_statuses=expired_statuses)
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedResponseError(f"{provider} returned non-JSON body", provider=provider) from exc
    if not isinstance(data, dict):
        raise MalformedResponseError(f"{provider} returned unexpected payload", provider=provider)
    return data


# =============================================================================
# Factory
# =============================================================================

def resolve_access_token(
    org_id,
    access_token_encrypted: str | None,
    *,
    provider: str,
    encryption: EncryptionService | None = None,
) -> str:
    """Decrypt the stored access token; a missing token is an auth failure."""
    encryption = encryption or get_encryption_service()
    token = encryption.decrypt_field(org_id, access_token_encrypted, ACCESS_TOKEN_CONTEXT)
    if not token:
        raise AuthError("No access token stored for account", provider=provider)
    return token


def build_email_client(account, *, encryption: EncryptionService | None = None) -> ProviderClient:
    """Build the provider client for an EmailAccount row."""
    from leadflow.db.enums import Provider
    from leadflow.services.gmail_service import GmailClient
    from leadflow.services.graph_service import GraphClient

    token = resolve_access_token(
        account.org_id,
        account.access_token_encrypted,
        provider=account.provider,
        encryption=encryption,
    )
    if account.provider == Provider.GMAIL.value:
        return GmailClient(token)
    if account.provider == Provider.OUTLOOK.value:
        return GraphClient(token)
    raise ProviderError(f"Unsupported email provider: {account.provider}", provider=account.provider)


def build_calendar_client(account, *, encryption: EncryptionService | None = None):
    """Build the calendar client for a CalendarAccount row."""
    from leadflow.db.enums import Provider
    from leadflow.services.calendar_service import GoogleCalendarClient

    token = resolve_access_token(
        account.org_id,
        account.access_token_encrypted,
        provider=account.provider,
        encryption=encryption,
    )
    if account.provider == Provider.GOOGLE_CALENDAR.value:
        return GoogleCalendarClient(token, calendar_id=account.calendar_id)
    raise ProviderError(
        f"Unsupported calendar provider: {account.provider}", provider=account.provider
    )
