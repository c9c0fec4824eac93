"""HTTP tests for /sync, /classify and /alerts."""

import json
import uuid

import pytest

from leadflow.core.deps import get_ai_provider
from leadflow.main import app
from leadflow.services.sync_registry import in_flight
from tests.conftest import FakeModel, make_email_account
from tests.test_alert_service import make_intelligence
from tests.test_classification_service import make_stored_email


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_requires_authentication(client):
    response = await client.post("/sync/auto")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_session_token(client):
    response = await client.post("/sync/auto", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_internal_secret_checks(internal_client, test_org):
    bad = await internal_client.post("/sync/auto", headers={"X-Internal-Secret": "wrong"})
    assert bad.status_code == 403

    missing_org = await internal_client.post(
        "/sync/auto", headers={"X-Internal-Secret": "internal-secret", "X-Org-Id": ""}
    )
    assert missing_org.status_code == 400

    unknown_org = await internal_client.post("/sync/auto", headers={"X-Org-Id": str(uuid.uuid4())})
    assert unknown_org.status_code == 403


@pytest.mark.asyncio
async def test_auto_sync_without_accounts(authed_client, cycle_session):
    response = await authed_client.post("/sync/auto")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["correlationId"]
    assert body["result"]["email"]["error"] == "No connected email accounts found"
    assert body["result"]["calendar"]["error"] == "No connected calendar accounts found"


@pytest.mark.asyncio
async def test_auto_sync_reports_account_failure_in_body(internal_client, cycle_session, test_org):
    make_email_account(cycle_session, test_org, email="a@example.com", access_token_encrypted=None)

    response = await internal_client.post("/sync/auto")

    assert response.status_code == 200
    email = response.json()["result"]["email"]
    # The stage ran; the failure is counted per account.
    assert email["synced"] is True
    assert email["failedAccounts"] == 1


@pytest.mark.asyncio
async def test_manual_sync(authed_client, cycle_session, test_org):
    make_email_account(cycle_session, test_org, email="a@example.com", access_token_encrypted=None)

    response = await authed_client.post("/sync/manual", json={"force": True})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Manual sync completed"
    accounts = body["results"]["email"]["accounts"]
    assert [a["email"] for a in accounts] == ["a@example.com"]
    assert accounts[0]["success"] is False
    assert "No access token stored" in accounts[0]["error"]


@pytest.mark.asyncio
async def test_manual_sync_while_busy(authed_client, cycle_session, test_org):
    lease = in_flight.acquire(test_org.id)
    try:
        response = await authed_client.post("/sync/manual")
    finally:
        lease.release()

    assert response.status_code == 200
    assert response.json()["message"] == "Sync already in progress"
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_sync_status(authed_client, db, test_org):
    make_email_account(db, test_org, email="a@example.com")

    response = await authed_client.get("/sync/status")

    assert response.status_code == 200
    body = response.json()
    assert body["overallHealth"] == "healthy"
    assert body["accounts"][0]["email"] == "a@example.com"


@pytest.mark.asyncio
async def test_scheduler_status_requires_internal_secret(authed_client, internal_client):
    assert (await authed_client.get("/sync/scheduler")).status_code == 403

    response = await internal_client.get("/sync/scheduler")
    assert response.status_code == 200
    assert response.json()["running"] is False


@pytest.mark.asyncio
async def test_classify_unknown_email(authed_client):
    response = await authed_client.post("/classify", json={"emailId": str(uuid.uuid4())})
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


@pytest.mark.asyncio
async def test_classify_without_model_is_unavailable(authed_client, db, test_org):
    message = make_stored_email(db, test_org)
    app.dependency_overrides[get_ai_provider] = lambda: None

    response = await authed_client.post("/classify", json={"emailId": str(message.id)})

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "model_unavailable"


@pytest.mark.asyncio
async def test_classify_and_fetch(authed_client, db, test_org, monkeypatch):
    monkeypatch.setattr("leadflow.core.config.settings.AI_PRIMARY_MODEL", "primary")
    message = make_stored_email(db, test_org)
    completion = json.dumps({"category": "seller_lead", "priorityScore": 60, "leadScore": 75, "confidenceScore": 0.8})
    app.dependency_overrides[get_ai_provider] = lambda: FakeModel(responses={"primary": [completion]})

    response = await authed_client.post("/classify", json={"emailId": str(message.id)})

    assert response.status_code == 200
    body = response.json()
    assert body["emailId"] == str(message.id)
    assert body["category"] == "seller_lead"
    assert body["priorityScore"] == 60
    assert body["modelUsed"] == "primary"

    fetched = await authed_client.get(f"/classify/{message.id}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]


@pytest.mark.asyncio
async def test_get_missing_classification(authed_client):
    response = await authed_client.get(f"/classify/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


@pytest.mark.asyncio
async def test_alert_errors(authed_client, db, test_org):
    record = make_intelligence(db, test_org)

    unknown = await authed_client.post("/alerts", json={"type": "made_up", "leadIntelligenceId": str(record.id)})
    assert unknown.status_code == 400

    missing = await authed_client.post("/alerts", json={"type": "high_score", "leadIntelligenceId": str(uuid.uuid4())})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_alert_triggered_and_listed(authed_client, db, test_org):
    record = make_intelligence(db, test_org, overall_score=92)

    response = await authed_client.post(
        "/alerts", json={"type": "high_score", "leadIntelligenceId": str(record.id), "threshold": 90}
    )

    assert response.status_code == 200
    alert = response.json()["alert"]
    assert alert["triggered"] is True
    assert alert["deduplicated"] is False
    assert alert["priority"] == "high"
    assert alert["leadId"] == str(record.lead_id)
    assert alert["id"]

    listed = await authed_client.get("/alerts", params={"unread_only": True})
    assert listed.status_code == 200
    body = listed.json()
    assert [a["id"] for a in body["alerts"]] == [alert["id"]]
    assert body["summary"] == {"total": 1, "unread": 1, "high": 1, "medium": 0, "low": 0}


@pytest.mark.asyncio
async def test_alert_conditions_not_met(authed_client, db, test_org):
    record = make_intelligence(db, test_org, overall_score=10)

    response = await authed_client.post("/alerts", json={"type": "high_score", "leadIntelligenceId": str(record.id)})

    alert = response.json()["alert"]
    assert alert["triggered"] is False
    assert alert["id"] is None
    assert alert["message"] == "Conditions not met"


@pytest.mark.asyncio
async def test_batch_alerts(authed_client, db, test_org):
    hot = make_intelligence(db, test_org, overall_score=90, conversion_probability=0.5)
    make_intelligence(db, test_org, overall_score=20)

    response = await authed_client.put("/alerts")

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 2
    assert body["alertsTriggered"] == 1
    assert body["alerts"][0]["type"] == "high_score"
    assert body["alerts"][0]["leadIntelligenceId"] == str(hot.id)
