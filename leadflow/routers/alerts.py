"""
Alerts Router - /alerts endpoints.

Single-rule evaluation (POST), the batch sweep (PUT), and the alert feed (GET).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from leadflow.core.deps import get_db, get_org_scope
from leadflow.db.enums import INTELLIGENCE_NOTIFICATION_PREFIX
from leadflow.schemas.alerts import (
    AlertListResponse,
    AlertRequest,
    AlertResponse,
    AlertResult,
    BatchAlertItem,
    BatchAlertResponse,
    NotificationRead,
)
from leadflow.services import alert_service, notification_service


router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.post("", response_model=AlertResponse)
def evaluate_alert(
    body: AlertRequest,
    org_id: UUID = Depends(get_org_scope),
    db: Session = Depends(get_db),
):
    try:
        outcome = alert_service.process_alert(
            db,
            org_id=org_id,
            lead_intelligence_id=body.lead_intelligence_id,
            rule_type=body.type,
            threshold=body.threshold,
            conditions=[c.model_dump() for c in body.conditions] if body.conditions else None,
        )
    except alert_service.UnknownAlertTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except alert_service.LeadIntelligenceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    intelligence = outcome.intelligence
    return AlertResponse(
        alert=AlertResult(
            id=outcome.notification.id if outcome.notification else None,
            type=outcome.rule_type.value,
            triggered=outcome.triggered,
            deduplicated=outcome.deduplicated,
            lead_id=intelligence.lead_id if intelligence else None,
            contact_id=intelligence.contact_id if intelligence else None,
            message=outcome.message,
            priority=outcome.priority.value if outcome.priority else None,
        )
    )


@router.put("", response_model=BatchAlertResponse)
def process_batch_alerts(
    org_id: UUID = Depends(get_org_scope),
    db: Session = Depends(get_db),
):
    result = alert_service.process_batch_alerts(db, org_id=org_id)
    return BatchAlertResponse(
        processed=result.processed,
        alerts_triggered=len(result.alerts),
        alerts=[
            BatchAlertItem(
                type=alert.type.value,
                lead_intelligence_id=alert.lead_intelligence_id,
                lead_id=alert.lead_id,
                contact_id=alert.contact_id,
                notification_id=alert.notification_id,
                score=alert.score,
                conversion_probability=alert.conversion_probability,
            )
            for alert in result.alerts
        ],
    )


@router.get("", response_model=AlertListResponse)
def list_alerts(
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = Query(False),
    org_id: UUID = Depends(get_org_scope),
    db: Session = Depends(get_db),
):
    notifications = notification_service.get_notifications(
        db,
        org_id,
        type_prefix=INTELLIGENCE_NOTIFICATION_PREFIX,
        unread_only=unread_only,
        limit=limit,
    )
    return AlertListResponse(
        alerts=[NotificationRead.model_validate(n) for n in notifications],
        summary=notification_service.summarize(notifications),
    )
