from __future__ import annotations
import uuid
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from physio.config import Settings
from physio.services.auth_service import TherapistIdentity, resolve_identity
from physio.services.etag import first_if_match
from physio.services.openai_client import ChatCompletionProvider

CORRELATION_HEADER = "X-Correlation-Id"
MAX_CORRELATION_ID_LENGTH = 128

bearer_scheme = HTTPBearer(auto_error=False)


def correlation_id_from(value: Optional[str]) -> str:
    if value and value.strip() and len(value.strip()) <= MAX_CORRELATION_ID_LENGTH:
        return value.strip()
    return uuid.uuid4().hex


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_correlation_id(request: Request) -> str:
    # 미들웨어에서 이미 정해 둔 값을 그대로 사용
    cid = getattr(request.state, "correlation_id", None)
    return cid or correlation_id_from(request.headers.get(CORRELATION_HEADER))


async def get_current_therapist(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings_dep),
) -> TherapistIdentity:
    token = credentials.credentials if credentials else None
    return resolve_identity(token, settings)


def get_if_match(if_match: Optional[str] = Header(default=None, alias="If-Match")) -> Optional[str]:
    return first_if_match(if_match)


async def get_provider(settings: Settings = Depends(get_settings_dep)) -> AsyncIterator[ChatCompletionProvider]:
    """요청마다 클라이언트를 만들고 요청이 끝나면 닫는다."""
    provider = ChatCompletionProvider.from_settings(settings)
    try:
        yield provider
    finally:
        await provider.aclose()
