"""Helpers for parsing and validating model JSON completions."""

from __future__ import annotations

import json
import logging
import re
from typing import Iterator, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _candidates(text: str) -> Iterator[str]:
    """Bare completion, then a fenced block, then the outermost braces."""
    stripped = text.strip()
    yield stripped
    fenced = _FENCED_BLOCK_RE.search(stripped)
    if fenced:
        yield fenced.group(1).strip()
    braces = _OBJECT_RE.search(stripped)
    if braces:
        yield braces.group(0)


def parse_json_object(text: str | None) -> dict | None:
    """
    Parse a model completion into a JSON object.

    Accepts a bare object, a ```json fenced block, or an object embedded in
    prose. Returns None when no candidate decodes to an object.
    """
    if not text:
        return None
    last_error: json.JSONDecodeError | None = None
    for candidate in _candidates(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
            continue
        if isinstance(data, dict):
            return data
    logger.warning("Failed to parse JSON object from completion: %s", last_error or "no object found")
    return None


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning("%s validation failed: %s", model_cls.__name__, exc.error_count())
        return None
