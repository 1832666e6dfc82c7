from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from fastapi import status
from jose import JWTError, jwt

from physio.config import Settings
from physio.errors import ApiError

logger = structlog.get_logger(__name__)

# 토큰 발급은 IdP 담당. 여기서는 검증과 치료사 id 추출만 한다.
_ID_CLAIMS = (
    "sub",
    "user_id",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier",
)


@dataclass(frozen=True)
class TherapistIdentity:
    therapist_id: uuid.UUID
    email: Optional[str] = None


def _invalid_token() -> ApiError:
    return ApiError(status.HTTP_401_UNAUTHORIZED, "invalid_token", headers={"WWW-Authenticate": "Bearer"})


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    if not settings.jwt_secret:
        logger.error("jwt_secret_missing")
        raise _invalid_token()
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError as e:
        logger.warning("token_rejected", reason=str(e))
        raise _invalid_token()


def resolve_identity(token: Optional[str], settings: Settings) -> TherapistIdentity:
    """Bearer 토큰 -> TherapistIdentity. 실패는 전부 401 invalid_token."""
    if not token:
        raise _invalid_token()
    claims = decode_token(token, settings)

    raw_id = next((claims[c] for c in _ID_CLAIMS if claims.get(c)), None)
    try:
        therapist_id = uuid.UUID(str(raw_id))
    except ValueError:
        raise _invalid_token()
    if therapist_id.int == 0:
        raise _invalid_token()

    email = claims.get("email")
    return TherapistIdentity(therapist_id=therapist_id, email=email if isinstance(email, str) else None)
