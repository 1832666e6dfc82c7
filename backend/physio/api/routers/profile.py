from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from physio.api.deps import get_current_therapist, get_if_match
from physio.db import get_db
from physio.schemas import ProfileOut, ProfileUpdate
from physio.services import profile_service
from physio.services.auth_service import TherapistIdentity

router = APIRouter(prefix="/profile", tags=["profile"])


# [1] 프로필 조회
@router.get("", response_model=ProfileOut)
async def get_profile(
    response: Response,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    profile = await profile_service.get_profile(db, current.therapist_id)
    response.headers["ETag"] = profile.etag
    return profile


# [2] 프로필 수정 (이름, 선호 모델)
@router.patch("", response_model=ProfileOut)
async def update_profile(
    payload: ProfileUpdate,
    response: Response,
    if_match: Optional[str] = Depends(get_if_match),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    profile = await profile_service.update_profile(db, current.therapist_id, payload, if_match)
    response.headers["ETag"] = profile.etag
    return profile
