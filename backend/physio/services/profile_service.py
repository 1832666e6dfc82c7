from __future__ import annotations
import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from physio.errors import bad_request, not_found, unprocessable
from physio.models import Profile
from physio.schemas import ProfileOut, ProfileUpdate
from physio.services import validation
from physio.services.etag import validate_token, write_if_current

logger = structlog.get_logger(__name__)

MAX_MODEL_LENGTH = 200


async def _load(db: AsyncSession, therapist_id: uuid.UUID) -> Profile:
    profile = await db.get(Profile, therapist_id)
    if profile is None:
        raise not_found("profile_missing")
    return profile


async def get_profile(db: AsyncSession, therapist_id: uuid.UUID) -> ProfileOut:
    return ProfileOut.model_validate(await _load(db, therapist_id))


def _normalize_model(value: Optional[str], current: Optional[str]) -> Optional[str]:
    # None 이면 기존 값 유지, 빈 문자열이면 기본 모델로 되돌림
    if value is None:
        return current
    trimmed = value.strip()
    if not trimmed:
        return None
    if len(trimmed) > MAX_MODEL_LENGTH or validation.contains_markup(trimmed):
        raise unprocessable("preferred_ai_model_invalid")
    return trimmed


async def update_profile(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    cmd: ProfileUpdate,
    if_match: Optional[str],
) -> ProfileOut:
    profile = await _load(db, therapist_id)
    validate_token(if_match, profile.updated_at)

    first_name = validation.normalize_name(cmd.first_name, "first_name")
    last_name = validation.normalize_name(cmd.last_name, "last_name")
    preferred_model = _normalize_model(cmd.preferred_ai_model, profile.preferred_ai_model)

    if (first_name, last_name, preferred_model) == (
        profile.first_name,
        profile.last_name,
        profile.preferred_ai_model,
    ):
        raise bad_request("no_changes_submitted")

    await write_if_current(
        db,
        profile,
        {"first_name": first_name, "last_name": last_name, "preferred_ai_model": preferred_model},
    )
    logger.info("profile_updated", therapist_id=str(therapist_id))
    return ProfileOut.model_validate(profile)
