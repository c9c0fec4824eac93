"""Structured logging helpers (content-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    org_id: UUID | str | None = None,
    account_id: UUID | str | None = None,
    provider: str | None = None,
    correlation_id: str | None = None,
    action: str | None = None,
    route: str | None = None,
    **counts: int | str | None,
) -> dict[str, Any]:
    """Return a log context dict holding only ids, action names and counters."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if account_id:
        context["account_id"] = str(account_id)
    if provider:
        context["provider"] = provider
    if correlation_id:
        context["correlation_id"] = correlation_id
    if action:
        context["action"] = action
    if route:
        context["route"] = route
    for key, value in counts.items():
        if value is not None:
            context[key] = value
    return context
