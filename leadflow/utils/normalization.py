"""Normalization helpers for addresses and subjects."""

import re
from typing import Optional

_ADDRESS_RE = re.compile(r"^\s*\"?([^\"<]*?)\"?\s*<([^>]+)>\s*$")
_REPLY_PREFIXES = ("re:", "fw:", "fwd:")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and trim an address; None if empty."""
    if not email:
        return None
    return email.strip().lower() or None


def parse_address(value: Optional[str]) -> tuple[str, str]:
    """
    Split ``"Name <addr@x>"`` into (name, email).

    A bare address returns ("", address). Unparseable input is returned as the
    name with an empty email.
    """
    if not value:
        return "", ""
    match = _ADDRESS_RE.match(value)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    stripped = value.strip()
    if "@" in stripped and " " not in stripped:
        return "", stripped
    return stripped, ""


def split_address_list(value: Optional[str]) -> list[str]:
    """Split a comma separated header into lowercased addresses."""
    if not value:
        return []
    addresses: list[str] = []
    for part in value.split(","):
        _, email = parse_address(part)
        normalized = normalize_email(email)
        if normalized and normalized not in addresses:
            addresses.append(normalized)
    return addresses


def clean_subject(subject: Optional[str]) -> str:
    """Collapse whitespace and strip reply/forward prefixes repeatedly."""
    if not subject:
        return ""
    cleaned = " ".join(subject.strip().split())
    while cleaned.lower().startswith(_REPLY_PREFIXES):
        cleaned = cleaned.split(":", 1)[1].strip()
    return cleaned


def subject_index(subject: Optional[str]) -> str:
    """Thread grouping key: cleaned, lowercased subject."""
    return clean_subject(subject).lower()
