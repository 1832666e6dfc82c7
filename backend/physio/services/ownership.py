from __future__ import annotations
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from physio.errors import forbidden, not_found
from physio.models import Patient, Visit, VisitAiGeneration


async def get_owned_patient(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    patient_id: uuid.UUID,
    not_owned_code: str = "patient_not_owned",
) -> Patient:
    """없으면 404, 다른 치료사 소유면 403."""
    patient = await db.get(Patient, patient_id)
    if patient is None:
        raise not_found("patient_missing")
    if patient.therapist_id != therapist_id:
        raise forbidden(not_owned_code)
    return patient


async def get_owned_visit(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    not_owned_code: str = "patient_not_owned",
) -> Visit:
    visit = await db.get(Visit, visit_id)
    if visit is None:
        raise not_found("visit_missing")
    await get_owned_patient(db, therapist_id, visit.patient_id, not_owned_code)
    return visit


async def get_owned_generation(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    generation_id: uuid.UUID,
) -> VisitAiGeneration:
    # 방문 소유권은 호출 측에서 먼저 확인한다.
    res = await db.execute(
        select(VisitAiGeneration).where(
            VisitAiGeneration.id == generation_id,
            VisitAiGeneration.visit_id == visit_id,
        )
    )
    generation = res.scalar_one_or_none()
    if generation is None:
        raise not_found("ai_generation_missing")
    if generation.therapist_id != therapist_id:
        raise forbidden("visit_not_owned")
    return generation
