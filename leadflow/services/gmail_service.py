"""Gmail read client.

Initial sync pages threads.list; incremental sync pages history.list from the
stored historyId.
"""

import logging

import httpx

from leadflow.core.config import settings
from leadflow.db.enums import Provider
from leadflow.services.email_parsing import parse_gmail_message
from leadflow.services.provider_client import (
    ChangePage,
    MalformedResponseError,
    ProviderClient,
    ProviderMessage,
    request_json,
)

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
_GMAIL_THREADS_URL = f"{GMAIL_API_BASE}/threads"
_GMAIL_THREAD_GET_URL = f"{GMAIL_API_BASE}/threads/{{thread_id}}"
_GMAIL_MESSAGE_GET_URL = f"{GMAIL_API_BASE}/messages/{{message_id}}"
_GMAIL_HISTORY_URL = f"{GMAIL_API_BASE}/history"

INITIAL_SYNC_QUERY = "in:inbox OR in:sent"


def _parse_history_id(value: object | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value))
    except ValueError:
        raise MalformedResponseError(f"Invalid Gmail historyId: {value!r}", provider="gmail")


def _max_history(*values: int | None) -> int | None:
    present = [value for value in values if value is not None]
    return max(present) if present else None


class GmailClient(ProviderClient):
    """Gmail API over httpx."""

    provider = Provider.GMAIL.value
    numeric_cursor = True

    def __init__(
        self,
        access_token: str,
        *,
        page_size: int | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.access_token = access_token
        self.page_size = page_size or settings.SYNC_PAGE_SIZE
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get(self, url: str, params: dict | None = None, expired_statuses: tuple[int, ...] = ()) -> dict:
        return request_json(
            self._client,
            "GET",
            url,
            provider=self.provider,
            access_token=self.access_token,
            params=params,
            expired_statuses=expired_statuses,
        )

    def list_changed_threads(self, cursor: str | None, page_token: str | None = None) -> ChangePage:
        if cursor is None:
            return self._list_recent_threads(page_token)
        return self._list_history(cursor, page_token)

    def _list_recent_threads(self, page_token: str | None) -> ChangePage:
        params = {"maxResults": self.page_size, "q": INITIAL_SYNC_QUERY}
        if page_token:
            params["pageToken"] = page_token
        payload = self._get(_GMAIL_THREADS_URL, params=params)

        thread_ids: list[str] = []
        highest: int | None = None
        for thread in payload.get("threads") or []:
            thread_id = thread.get("id")
            if not thread_id:
                raise MalformedResponseError("Gmail thread missing id", provider=self.provider)
            thread_ids.append(str(thread_id))
            highest = _max_history(highest, _parse_history_id(thread.get("historyId")))

        checkpoint = str(highest) if highest is not None else None
        return ChangePage(
            thread_ids=thread_ids,
            next_page_token=payload.get("nextPageToken"),
            checkpoint=checkpoint,
            cursor=checkpoint,
        )

    def _list_history(self, cursor: str, page_token: str | None) -> ChangePage:
        params = {
            "startHistoryId": cursor,
            "historyTypes": "messageAdded",
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        # 404 means the startHistoryId is older than Gmail keeps.
        payload = self._get(_GMAIL_HISTORY_URL, params=params, expired_statuses=(404,))

        message_ids: list[str] = []
        seen: set[str] = set()
        highest_row: int | None = None
        for row in payload.get("history") or []:
            highest_row = _max_history(highest_row, _parse_history_id(row.get("id")))
            for added in row.get("messagesAdded") or []:
                message_id = (added.get("message") or {}).get("id")
                if not message_id or message_id in seen:
                    continue
                seen.add(message_id)
                message_ids.append(str(message_id))

        mailbox_history = _parse_history_id(payload.get("historyId"))
        checkpoint = str(highest_row) if highest_row is not None else None
        final = _max_history(highest_row, mailbox_history)
        return ChangePage(
            message_ids=message_ids,
            next_page_token=payload.get("nextPageToken"),
            checkpoint=checkpoint,
            cursor=str(final) if final is not None else None,
        )

    def get_thread(self, thread_id: str) -> list[ProviderMessage]:
        payload = self._get(_GMAIL_THREAD_GET_URL.format(thread_id=thread_id), params={"format": "full"})
        return [parse_gmail_message(message) for message in payload.get("messages") or []]

    def get_message(self, message_id: str) -> ProviderMessage:
        payload = self._get(_GMAIL_MESSAGE_GET_URL.format(message_id=message_id), params={"format": "full"})
        return parse_gmail_message(payload)
