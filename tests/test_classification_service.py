"""Tests for email classification (idempotence, fallback, normalization)."""

import json
import uuid

import pytest

from leadflow.core.config import settings
from leadflow.db.models import AIProcessingQueue, EmailAIAnalysis, EmailMessage, EmailThread
from leadflow.services import classification_service
from leadflow.services.classification_service import (
    EmailNotFoundError,
    MalformedModelResponseError,
    ModelUnavailableError,
    NoContentError,
    classify_email,
    normalize_category,
    truncate_at_word,
)
from tests.conftest import FakeModel, make_email_account


def make_stored_email(db, org, *, subject="Showing request for 12 Oak St", body="Can we tour Saturday?"):
    account = make_email_account(db, org)
    thread = EmailThread(
        org_id=org.id,
        account_id=account.id,
        subject_enc=subject,
        subject_index=subject.lower(),
    )
    db.add(thread)
    db.flush()
    message = EmailMessage(
        org_id=org.id,
        account_id=account.id,
        thread_id=thread.id,
        provider_message_id=f"pm-{thread.id}",
        subject_enc=subject,
        body_enc=json.dumps({"type": "text", "content": body}),
        from_enc="Jane Buyer <jane@example.com>",
    )
    db.add(message)
    db.commit()
    return message


def _completion(**overrides) -> str:
    payload = {
        "category": "showing_request",
        "priorityScore": 85,
        "leadScore": 70,
        "confidenceScore": 0.9,
        "sentimentScore": 0.8,
        "keyEntities": {"property": "12 Oak St"},
        "reasoning": "Asks for a tour",
        "suggestedAction": "Confirm Saturday showing",
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.fixture(autouse=True)
def _models(monkeypatch):
    monkeypatch.setattr(settings, "AI_PRIMARY_MODEL", "primary")
    monkeypatch.setattr(settings, "AI_FALLBACK_MODEL", "fallback")


@pytest.mark.asyncio
async def test_classify_creates_record_and_enqueues_urgent_reply(db, test_org):
    message = make_stored_email(db, test_org)
    model = FakeModel(responses={"primary": [_completion()]})

    record = await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)

    assert record.category == "showing_request"
    assert record.priority_score == 85
    assert record.model_used == "primary"
    assert record.key_entities == {"property": "12 Oak St"}
    queued = db.query(AIProcessingQueue).filter(AIProcessingQueue.email_id == message.id).all()
    assert len(queued) == 1
    assert queued[0].priority == 85


@pytest.mark.asyncio
async def test_classify_is_idempotent(db, test_org):
    message = make_stored_email(db, test_org)
    model = FakeModel(responses={"primary": [_completion(), _completion(category="marketing")]})

    first = await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)
    second = await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)

    assert first.id == second.id
    assert model.calls == ["primary"]
    assert db.query(EmailAIAnalysis).filter(EmailAIAnalysis.email_id == message.id).count() == 1


@pytest.mark.asyncio
async def test_falls_back_to_secondary_model(db, test_org):
    message = make_stored_email(db, test_org)
    model = FakeModel(responses={"primary": [RuntimeError("503")], "fallback": [_completion(priorityScore=40)]})

    record = await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)

    assert model.calls == ["primary", "fallback"]
    assert record.model_used == "fallback"
    assert db.query(AIProcessingQueue).count() == 0


@pytest.mark.asyncio
async def test_both_models_failing_is_model_unavailable(db, test_org):
    message = make_stored_email(db, test_org)
    model = FakeModel(responses={"primary": [RuntimeError("down")], "fallback": [RuntimeError("down")]})

    with pytest.raises(ModelUnavailableError):
        await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)

    assert db.query(EmailAIAnalysis).count() == 0


@pytest.mark.asyncio
async def test_malformed_response_writes_nothing(db, test_org):
    message = make_stored_email(db, test_org)
    model = FakeModel(responses={"primary": ["I think this is a lead!"]})

    with pytest.raises(MalformedModelResponseError):
        await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)

    assert db.query(EmailAIAnalysis).count() == 0
    assert db.query(AIProcessingQueue).count() == 0


@pytest.mark.asyncio
async def test_fenced_response_with_synonym_and_out_of_range_scores(db, test_org):
    message = make_stored_email(db, test_org)
    fenced = "```json\n" + _completion(category="Viewing Request", priorityScore="130%", confidenceScore=-2) + "\n```"
    model = FakeModel(responses={"primary": [fenced]})

    record = await classify_email(db, org_id=test_org.id, email_id=message.id, provider=model)

    assert record.category == "showing_request"
    assert record.priority_score == 100
    assert record.confidence_score == 0.0


@pytest.mark.asyncio
async def test_unknown_email_and_empty_email(db, test_org):
    model = FakeModel()
    with pytest.raises(EmailNotFoundError):
        await classify_email(db, org_id=test_org.id, email_id=uuid.uuid4(), provider=model)

    empty = make_stored_email(db, test_org, subject="", body="")
    with pytest.raises(NoContentError):
        await classify_email(db, org_id=test_org.id, email_id=empty.id, provider=model)
    assert model.calls == []


@pytest.mark.asyncio
async def test_no_provider_configured(db, test_org):
    message = make_stored_email(db, test_org)
    with pytest.raises(ModelUnavailableError):
        await classify_email(db, org_id=test_org.id, email_id=message.id, provider=None)


def test_normalize_category():
    assert normalize_category("HOT") == "hot_lead"
    assert normalize_category("buyer-lead") == "buyer_lead"
    assert normalize_category("something new") == "follow_up"
    assert normalize_category(None) == "follow_up"


def test_truncate_at_word():
    text = "alpha beta gamma delta"
    assert truncate_at_word(text, 100) == text
    assert truncate_at_word(text, 14) == "alpha beta..."


def test_error_codes():
    assert classification_service.NoContentError.code == "no_content"
    assert classification_service.MalformedModelResponseError.code == "malformed_response"
