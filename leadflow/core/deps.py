"""FastAPI dependencies for tenant resolution, database access and collaborators."""

from dataclasses import dataclass
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from leadflow.core.security import decode_session_token, internal_secret_matches
from leadflow.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "leadflow_session"
INTERNAL_SECRET_HEADER = "X-Internal-Secret"
ORG_ID_HEADER = "X-Org-Id"


@dataclass
class TenantContext:
    """Resolved caller: the tenant every query is scoped by."""
    org_id: UUID
    user_id: UUID | None = None
    role: str | None = None
    internal: bool = False


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.cookies.get(COOKIE_NAME)


def _parse_uuid(value: str | None, *, status_code: int, detail: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=status_code, detail=detail)


def _ensure_org_exists(db: Session, org_id: UUID) -> None:
    # Import here to avoid circular imports
    from leadflow.db.models import Organization

    if db.query(Organization.id).filter(Organization.id == org_id).first() is None:
        raise HTTPException(status_code=403, detail="Organization not found")


def get_tenant_context(request: Request, db: Session = Depends(get_db)) -> TenantContext:
    """
    Resolve the caller's tenant.

    Internal callers (scheduler, cron) send ``X-Internal-Secret`` plus
    ``X-Org-Id``; everyone else sends a session JWT as a Bearer token or
    the session cookie.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Bad internal secret or unknown organization
    """
    internal_secret = request.headers.get(INTERNAL_SECRET_HEADER)
    if internal_secret is not None:
        if not internal_secret_matches(internal_secret):
            raise HTTPException(status_code=403, detail="Invalid internal secret")
        org_header = request.headers.get(ORG_ID_HEADER)
        if not org_header:
            raise HTTPException(status_code=400, detail=f"Missing {ORG_ID_HEADER} header")
        org_id = _parse_uuid(org_header, status_code=400, detail=f"Invalid {ORG_ID_HEADER} header")
        _ensure_org_exists(db, org_id)
        return TenantContext(org_id=org_id, internal=True)

    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid session")

    org_id = _parse_uuid(payload.get("org_id"), status_code=401, detail="Invalid session")
    user_id = _parse_uuid(payload.get("sub"), status_code=401, detail="Invalid session")
    _ensure_org_exists(db, org_id)
    return TenantContext(org_id=org_id, user_id=user_id, role=payload.get("role"))


def get_org_scope(tenant: TenantContext = Depends(get_tenant_context)) -> UUID:
    """
    Get org_id for query scoping.

    Every list/detail query MUST filter by this value
    to ensure proper tenant isolation.
    """
    return tenant.org_id


def require_internal_secret(request: Request) -> None:
    """Guard for operator endpoints that are not tenant scoped."""
    if not internal_secret_matches(request.headers.get(INTERNAL_SECRET_HEADER)):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_ai_provider():
    """Model client for classification; None when no API key is configured."""
    from leadflow.services.ai_provider import get_configured_provider

    return get_configured_provider()
