"""Email classification: one lead intelligence record per message.

The model is called at most once per message that has no record yet. The
primary model falls back to a secondary model once; parse failures write
nothing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.core.config import settings
from leadflow.core.encryption import EncryptionService, get_encryption_service
from leadflow.core.structured_logging import build_log_context
from leadflow.db.enums import (
    DEFAULT_EMAIL_CATEGORY,
    EmailCategory,
    ProcessingStatus,
)
from leadflow.db.models import EmailAIAnalysis, EmailMessage
from leadflow.services import processing_queue_service
from leadflow.services.ai_prompt_registry import get_prompt
from leadflow.services.ai_prompt_schemas import EmailClassificationOutput
from leadflow.services.ai_provider import AIProvider, ModelCallError
from leadflow.services.ai_response_validation import parse_json_object, validate_model
from leadflow.services.email_parsing import strip_html
from leadflow.utils.datetime_parsing import utcnow
from leadflow.utils.normalization import parse_address

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class ClassificationError(Exception):
    """Base class for classification failures."""

    code = "classification_error"


class EmailNotFoundError(ClassificationError):
    code = "not_found"


class NoContentError(ClassificationError):
    code = "no_content"


class ModelUnavailableError(ClassificationError):
    code = "model_unavailable"


class MalformedModelResponseError(ClassificationError):
    code = "malformed_response"


# =============================================================================
# Normalization
# =============================================================================

CATEGORY_SYNONYMS: dict[str, str] = {
    "hot": EmailCategory.HOT_LEAD.value,
    "hot_lead": EmailCategory.HOT_LEAD.value,
    "urgent_lead": EmailCategory.HOT_LEAD.value,
    "showing": EmailCategory.SHOWING_REQUEST.value,
    "showing_request": EmailCategory.SHOWING_REQUEST.value,
    "viewing": EmailCategory.SHOWING_REQUEST.value,
    "viewing_request": EmailCategory.SHOWING_REQUEST.value,
    "tour_request": EmailCategory.SHOWING_REQUEST.value,
    "price": EmailCategory.PRICE_INQUIRY.value,
    "pricing": EmailCategory.PRICE_INQUIRY.value,
    "price_inquiry": EmailCategory.PRICE_INQUIRY.value,
    "seller": EmailCategory.SELLER_LEAD.value,
    "seller_lead": EmailCategory.SELLER_LEAD.value,
    "listing": EmailCategory.SELLER_LEAD.value,
    "listing_inquiry": EmailCategory.SELLER_LEAD.value,
    "buyer": EmailCategory.BUYER_LEAD.value,
    "buyer_lead": EmailCategory.BUYER_LEAD.value,
    "followup": EmailCategory.FOLLOW_UP.value,
    "follow_up": EmailCategory.FOLLOW_UP.value,
    "contract": EmailCategory.CONTRACT.value,
    "offer": EmailCategory.CONTRACT.value,
    "marketing": EmailCategory.MARKETING.value,
    "newsletter": EmailCategory.MARKETING.value,
    "promotion": EmailCategory.MARKETING.value,
    "spam": EmailCategory.MARKETING.value,
}


def normalize_category(raw: str | None) -> str:
    """Map free-text model output onto the closed category set."""
    if not raw:
        return DEFAULT_EMAIL_CATEGORY.value
    key = "_".join(raw.strip().lower().replace("-", " ").split())
    if EmailCategory.has_value(key):
        return key
    return CATEGORY_SYNONYMS.get(key, DEFAULT_EMAIL_CATEGORY.value)


def clamp(value: float | None, low: float, high: float, default: float) -> float:
    if value is None:
        return default
    return max(low, min(high, value))


def truncate_at_word(text: str, limit: int) -> str:
    """Cut to ``limit`` chars on a word boundary and append '...'."""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    boundary = cut.rfind(" ")
    if boundary > limit // 2:
        cut = cut[:boundary]
    return cut.rstrip() + "..."


# =============================================================================
# Input loading
# =============================================================================

@dataclass
class ClassificationInput:
    from_name: str
    from_email: str
    subject: str
    body: str


def _decode_body(raw: str | None) -> str:
    if not raw:
        return ""
    try:
        stored = json.loads(raw)
    except json.JSONDecodeError:
        return strip_html(raw)
    if isinstance(stored, dict):
        return strip_html(str(stored.get("content") or ""))
    return strip_html(raw)


def get_email_for_org(db: Session, *, org_id: UUID, email_id: UUID) -> EmailMessage | None:
    return (
        db.query(EmailMessage)
        .filter(EmailMessage.id == email_id, EmailMessage.org_id == org_id)
        .first()
    )


def build_classification_input(
    message: EmailMessage,
    encryption: EncryptionService,
) -> ClassificationInput:
    org_id = message.org_id
    subject = encryption.decrypt_field(org_id, message.subject_enc, "email:subject") or ""
    body = _decode_body(encryption.decrypt_field(org_id, message.body_enc, "email:body"))
    from_raw = encryption.decrypt_field(org_id, message.from_enc, "email:from") or ""
    from_name, from_email = parse_address(from_raw)
    return ClassificationInput(
        from_name=from_name,
        from_email=from_email,
        subject=truncate_at_word(" ".join(subject.split()), settings.AI_SUBJECT_CHAR_LIMIT),
        body=truncate_at_word(body, settings.AI_BODY_CHAR_LIMIT),
    )


def get_analysis(db: Session, *, org_id: UUID, email_id: UUID) -> EmailAIAnalysis | None:
    return (
        db.query(EmailAIAnalysis)
        .filter(EmailAIAnalysis.email_id == email_id, EmailAIAnalysis.org_id == org_id)
        .first()
    )


# =============================================================================
# Model invocation
# =============================================================================

async def _invoke_models(provider: AIProvider, prompt: str, system: str, log_context: dict) -> tuple[str, str]:
    """Primary model, then the fallback once. Returns (completion, model_used)."""
    models = [settings.AI_PRIMARY_MODEL]
    if settings.AI_FALLBACK_MODEL and settings.AI_FALLBACK_MODEL != settings.AI_PRIMARY_MODEL:
        models.append(settings.AI_FALLBACK_MODEL)

    last_error: ModelCallError | None = None
    for model in models:
        try:
            text = await provider.complete(prompt, model, system=system)
            return text, model
        except ModelCallError as exc:
            last_error = exc
            logger.warning(
                "Classification model call failed",
                extra={**log_context, "action": "classify_model_failed", "model": model},
            )
    raise ModelUnavailableError(str(last_error) if last_error else "No model available")


def _build_record(
    message: EmailMessage,
    output: EmailClassificationOutput,
    *,
    model_used: str,
) -> EmailAIAnalysis:
    return EmailAIAnalysis(
        org_id=message.org_id,
        email_id=message.id,
        thread_id=message.thread_id,
        category=normalize_category(output.category),
        priority_score=round(clamp(output.priority_score, 0, 100, 50)),
        lead_score=round(clamp(output.lead_score, 0, 100, 50)),
        confidence_score=clamp(output.confidence_score, 0.0, 1.0, 0.5),
        sentiment_score=clamp(output.sentiment_score, 0.0, 1.0, 0.5),
        key_entities=output.key_entities or {},
        reasoning=output.reasoning,
        suggested_action=output.suggested_action,
        model_used=model_used,
        processing_status=ProcessingStatus.COMPLETED.value,
        processed_at=utcnow(),
    )


def _persist_record(db: Session, record: EmailAIAnalysis) -> EmailAIAnalysis:
    """Insert once; a concurrent insert for the same email wins and is returned."""
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_analysis(db, org_id=record.org_id, email_id=record.email_id)
        if existing is None:
            raise
        return existing
    db.refresh(record)
    return record


# =============================================================================
# Public API
# =============================================================================

async def classify_email(
    db: Session,
    *,
    org_id: UUID,
    email_id: UUID,
    provider: AIProvider | None,
    encryption: EncryptionService | None = None,
    correlation_id: str | None = None,
) -> EmailAIAnalysis:
    """
    Return the intelligence record for a message, creating it if needed.

    Raises:
        EmailNotFoundError, NoContentError, ModelUnavailableError,
        MalformedModelResponseError
    """
    encryption = encryption or get_encryption_service()
    log_context = build_log_context(org_id=org_id, correlation_id=correlation_id, email_id=str(email_id))

    message = get_email_for_org(db, org_id=org_id, email_id=email_id)
    if message is None:
        raise EmailNotFoundError("Email not found")

    content = build_classification_input(message, encryption)
    if not content.subject.strip() and not content.body.strip():
        raise NoContentError("Email has no subject or body")

    existing = get_analysis(db, org_id=org_id, email_id=email_id)
    if existing is not None:
        return existing

    if provider is None:
        raise ModelUnavailableError("No AI provider configured")

    prompt_template = get_prompt("email_classification")
    prompt = prompt_template.render_user(
        from_name=content.from_name or "Unknown",
        from_email=content.from_email or "unknown",
        subject=content.subject or "(No subject)",
        body=content.body or "(empty)",
    )
    completion, model_used = await _invoke_models(provider, prompt, prompt_template.system, log_context)

    output = validate_model(EmailClassificationOutput, parse_json_object(completion))
    if output is None:
        logger.warning(
            "Classification response was not valid JSON",
            extra={**log_context, "action": "classify_malformed", "model": model_used},
        )
        raise MalformedModelResponseError("Model response could not be parsed")

    record = _persist_record(db, _build_record(message, output, model_used=model_used))

    try:
        processing_queue_service.enqueue_if_urgent(db, record)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Reply queue enqueue failed",
            extra={**log_context, "action": "classify_enqueue_failed"},
        )

    logger.info(
        "Email classified",
        extra={
            **log_context,
            "action": "classify_complete",
            "category": record.category,
            "priority_score": record.priority_score,
            "model": model_used,
        },
    )
    return record
