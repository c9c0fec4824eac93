"""Security utilities for session tokens and internal caller verification."""

import hmac
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from leadflow.core.config import settings


# =============================================================================
# Session Token (JWT)
# =============================================================================

def create_session_token(user_id: UUID, org_id: UUID, role: str = "member") -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error or jwt.InvalidTokenError("No JWT secret configured")


# =============================================================================
# Internal callers (scheduler, cron)
# =============================================================================

def internal_secret_matches(candidate: str | None) -> bool:
    """Constant-time comparison against INTERNAL_SECRET."""
    expected = settings.INTERNAL_SECRET
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())
