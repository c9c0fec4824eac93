"""Utility modules."""

from leadflow.utils.datetime_parsing import as_utc, parse_iso_datetime, utcnow
from leadflow.utils.normalization import (
    clean_subject,
    normalize_email,
    parse_address,
    split_address_list,
    subject_index,
)

__all__ = [
    # Datetime
    "as_utc",
    "parse_iso_datetime",
    "utcnow",
    # Normalization
    "clean_subject",
    "normalize_email",
    "parse_address",
    "split_address_list",
    "subject_index",
]
