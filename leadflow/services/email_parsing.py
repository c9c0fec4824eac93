"""Normalize Gmail and Graph message payloads into ProviderMessage."""

from __future__ import annotations

import base64
import binascii
import html
import re

from leadflow.services.provider_client import MalformedResponseError, ProviderMessage
from leadflow.utils.datetime_parsing import parse_epoch_millis, parse_iso_datetime

SNIPPET_MAX_CHARS = 200

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


# =============================================================================
# Text helpers
# =============================================================================

def strip_html(value: str | None) -> str:
    """Drop tags (and script/style blocks), decode entities, collapse whitespace."""
    if not value:
        return ""
    text = _SCRIPT_STYLE_RE.sub(" ", value)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def build_snippet(text_body: str | None, html_body: str | None = None) -> str:
    """Plaintext preview, whitespace collapsed, at most 200 characters."""
    # Plain bodies can still carry inline markup, so both go through strip_html.
    source = strip_html(text_body or html_body)
    return source[:SNIPPET_MAX_CHARS].strip()


def decode_base64url(data: str | None) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode()).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as exc:
        raise MalformedResponseError(f"Undecodable message body: {exc}") from exc


# =============================================================================
# Gmail
# =============================================================================

def extract_gmail_headers(payload: dict) -> dict[str, str]:
    """Lowercased header name -> value for the headers we store."""
    wanted = {"subject", "from", "to", "cc", "bcc", "date", "content-type"}
    headers: dict[str, str] = {}
    for header in payload.get("headers") or []:
        name = str(header.get("name") or "").lower()
        if name in wanted and name not in headers:
            headers[name] = str(header.get("value") or "")
    return headers


def _walk_gmail_parts(part: dict, found: dict[str, str], attachments: list[dict]) -> None:
    mime_type = str(part.get("mimeType") or "").lower()
    body = part.get("body") or {}
    filename = part.get("filename")

    if filename:
        attachments.append(
            {
                "filename": filename,
                "mimeType": part.get("mimeType") or "application/octet-stream",
                "size": int(body.get("size") or 0),
            }
        )
        return

    if mime_type == "text/plain" and "text" not in found and body.get("data"):
        found["text"] = decode_base64url(body.get("data"))
    elif mime_type == "text/html" and "html" not in found and body.get("data"):
        found["html"] = decode_base64url(body.get("data"))

    for child in part.get("parts") or []:
        _walk_gmail_parts(child, found, attachments)


def extract_gmail_body(payload: dict) -> tuple[str, str, list[dict]]:
    """
    Return (text_body, html_body, attachments).

    Single-part messages carry the body on the payload itself; the
    Content-Type header decides whether it is HTML.
    """
    attachments: list[dict] = []
    if not payload.get("parts"):
        content = decode_base64url((payload.get("body") or {}).get("data"))
        mime_type = str(payload.get("mimeType") or "").lower()
        content_type = extract_gmail_headers(payload).get("content-type", "").lower()
        if "text/html" in mime_type or "text/html" in content_type:
            return "", content, attachments
        return content, "", attachments

    found: dict[str, str] = {}
    for part in payload.get("parts") or []:
        _walk_gmail_parts(part, found, attachments)
    return found.get("text", ""), found.get("html", ""), attachments


def parse_gmail_message(message: dict) -> ProviderMessage:
    """Parse a users.messages.get (format=full) resource."""
    if not isinstance(message, dict) or not message.get("id"):
        raise MalformedResponseError("Gmail message missing id", provider="gmail")
    payload = message.get("payload") or {}
    headers = extract_gmail_headers(payload)
    text_body, html_body, attachments = extract_gmail_body(payload)

    history_id = message.get("historyId")
    return ProviderMessage(
        provider_message_id=str(message["id"]),
        provider_thread_id=message.get("threadId"),
        subject=headers.get("subject", ""),
        from_address=headers.get("from", ""),
        to=headers.get("to", ""),
        cc=headers.get("cc", ""),
        bcc=headers.get("bcc", ""),
        body_type="html" if html_body else "text",
        body_content=html_body or text_body,
        snippet=build_snippet(text_body, html_body) or strip_html(message.get("snippet")),
        attachments=attachments,
        sent_at=parse_epoch_millis(message.get("internalDate")),
        is_read="UNREAD" not in (message.get("labelIds") or []),
        history_id=int(history_id) if history_id else None,
    )


# =============================================================================
# Microsoft Graph
# =============================================================================

def _graph_address(entry: dict | None) -> str:
    address = (entry or {}).get("emailAddress") or {}
    email = address.get("address") or ""
    name = address.get("name") or ""
    if name and email and name != email:
        return f"{name} <{email}>"
    return email or name


def _graph_address_list(entries: list | None) -> str:
    return ", ".join(filter(None, (_graph_address(entry) for entry in entries or [])))


def parse_graph_message(message: dict) -> ProviderMessage:
    """Parse a Graph message resource (delta or direct get)."""
    if not isinstance(message, dict) or not message.get("id"):
        raise MalformedResponseError("Graph message missing id", provider="outlook")
    body = message.get("body") or {}
    content = body.get("content") or ""
    is_html = str(body.get("contentType") or "").lower() == "html"
    attachments = [
        {
            "filename": item.get("name"),
            "mimeType": item.get("contentType") or "application/octet-stream",
            "size": int(item.get("size") or 0),
        }
        for item in message.get("attachments") or []
        if item.get("name")
    ]
    return ProviderMessage(
        provider_message_id=str(message["id"]),
        provider_thread_id=message.get("conversationId"),
        subject=message.get("subject") or "",
        from_address=_graph_address(message.get("from")),
        to=_graph_address_list(message.get("toRecipients")),
        cc=_graph_address_list(message.get("ccRecipients")),
        bcc=_graph_address_list(message.get("bccRecipients")),
        body_type="html" if is_html else "text",
        body_content=content,
        snippet=build_snippet("" if is_html else content, content if is_html else None)
        or strip_html(message.get("bodyPreview")),
        attachments=attachments,
        sent_at=parse_iso_datetime(message.get("receivedDateTime")),
        is_read=bool(message.get("isRead")),
    )
