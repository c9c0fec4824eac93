"""
Classification Router - /classify endpoints.

Maps classification errors onto HTTP statuses; a repeat request for the
same email returns the stored record without calling the model.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from leadflow.core.deps import get_ai_provider, get_db, get_org_scope
from leadflow.schemas.classification import ClassifyRequest, IntelligenceRecordRead
from leadflow.services import classification_service


router = APIRouter(prefix="/classify", tags=["classification"])

ERROR_STATUS = {
    classification_service.EmailNotFoundError: 404,
    classification_service.NoContentError: 422,
    classification_service.MalformedModelResponseError: 502,
    classification_service.ModelUnavailableError: 503,
}


def _status_for(exc: classification_service.ClassificationError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


@router.post("", response_model=IntelligenceRecordRead)
async def classify_email(
    body: ClassifyRequest,
    org_id: UUID = Depends(get_org_scope),
    db: Session = Depends(get_db),
    provider=Depends(get_ai_provider),
):
    try:
        record = await classification_service.classify_email(
            db,
            org_id=org_id,
            email_id=body.email_id,
            provider=provider,
        )
    except classification_service.ClassificationError as e:
        raise HTTPException(
            status_code=_status_for(e),
            detail={"error": e.code, "message": str(e)},
        )
    return record


@router.get("/{email_id}", response_model=IntelligenceRecordRead)
def get_classification(
    email_id: UUID,
    org_id: UUID = Depends(get_org_scope),
    db: Session = Depends(get_db),
):
    record = classification_service.get_analysis(db, org_id=org_id, email_id=email_id)
    if not record:
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": "No analysis for this email"})
    return record
