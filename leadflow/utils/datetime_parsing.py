"""Datetime parsing helpers for provider payloads."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_epoch_millis(value: object | None) -> datetime | None:
    """Gmail ``internalDate`` (ms since epoch, usually a string)."""
    if value is None or value == "":
        return None
    try:
        millis = int(str(value))
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """ISO 8601 with optional ``Z`` suffix; naive values are treated as UTC."""
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    # Graph returns 7 fractional digits, fromisoformat accepts at most 6.
    if "." in raw:
        head, _, tail = raw.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[index:]
                break
            digits += char
        raw = f"{head}.{digits[:6]}{rest}" if digits else f"{head}{rest}"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return as_utc(parsed)


def parse_calendar_time(payload: dict | None) -> tuple[datetime | None, bool]:
    """Google Calendar ``{dateTime}`` or all-day ``{date}`` start/end objects."""
    if not payload:
        return None, False
    if payload.get("dateTime"):
        return parse_iso_datetime(payload["dateTime"]), False
    if payload.get("date"):
        try:
            day = datetime.strptime(payload["date"], "%Y-%m-%d")
        except ValueError:
            return None, True
        return day.replace(tzinfo=timezone.utc), True
    return None, False
