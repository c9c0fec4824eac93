"""Microsoft Graph mail client (delta queries)."""

import logging
from urllib.parse import parse_qs, urlsplit

import httpx

from leadflow.core.config import settings
from leadflow.db.enums import Provider
from leadflow.services.email_parsing import parse_graph_message
from leadflow.services.provider_client import (
    ChangePage,
    MalformedResponseError,
    ProviderClient,
    ProviderMessage,
    request_json,
)

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
_GRAPH_SELECT = "id,conversationId,subject,body,bodyPreview,from,toRecipients,ccRecipients,bccRecipients,receivedDateTime,isRead"
_GRAPH_DELTA_URL = f"{GRAPH_API_BASE}/me/messages/delta"
_GRAPH_MESSAGES_URL = f"{GRAPH_API_BASE}/me/messages"
_GRAPH_DELTA_PAGE_SIZE = 100


def extract_delta_token(delta_link: str | None) -> str | None:
    """Pull ``$deltatoken`` out of an ``@odata.deltaLink``."""
    if not delta_link:
        return None
    query = parse_qs(urlsplit(delta_link).query)
    values = query.get("$deltatoken") or query.get("deltatoken")
    return values[0] if values else None


class GraphClient(ProviderClient):
    """
    Graph delta sync.

    Delta pages carry message bodies inline, so pages come back hydrated.
    Page tokens are the full ``@odata.nextLink`` URLs; a capped run stores
    the last one on the account and the next run continues from it.
    """

    provider = Provider.OUTLOOK.value
    resumable_pages = True

    def __init__(self, access_token: str, *, http_client: httpx.Client | None = None):
        self.access_token = access_token
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get(self, url: str, params: dict | None = None) -> dict:
        # 410 Gone: the delta token's sync state was discarded.
        return request_json(
            self._client,
            "GET",
            url,
            provider=self.provider,
            access_token=self.access_token,
            params=params,
            expired_statuses=(410,),
        )

    def list_changed_threads(self, cursor: str | None, page_token: str | None = None) -> ChangePage:
        if page_token:
            payload = self._get(page_token)
        elif cursor:
            payload = self._get(_GRAPH_DELTA_URL, params={"$deltatoken": cursor})
        else:
            payload = self._get(
                _GRAPH_DELTA_URL,
                params={"$select": _GRAPH_SELECT, "$top": _GRAPH_DELTA_PAGE_SIZE},
            )

        values = payload.get("value")
        if values is None or not isinstance(values, list):
            raise MalformedResponseError("Graph delta response missing value", provider=self.provider)

        messages = [
            parse_graph_message(item)
            for item in values
            # Deleted items come back as {"id", "@removed"} tombstones.
            if "@removed" not in item
        ]
        return ChangePage(
            messages=messages,
            next_page_token=payload.get("@odata.nextLink"),
            cursor=extract_delta_token(payload.get("@odata.deltaLink")),
        )

    def get_thread(self, thread_id: str) -> list[ProviderMessage]:
        payload = self._get(
            _GRAPH_MESSAGES_URL,
            params={
                "$filter": f"conversationId eq '{thread_id}'",
                "$select": _GRAPH_SELECT,
            },
        )
        return [parse_graph_message(item) for item in payload.get("value") or []]

    def get_message(self, message_id: str) -> ProviderMessage:
        payload = self._get(f"{_GRAPH_MESSAGES_URL}/{message_id}", params={"$select": _GRAPH_SELECT})
        return parse_graph_message(payload)
