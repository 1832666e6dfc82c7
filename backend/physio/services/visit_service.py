from __future__ import annotations
import uuid
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from physio.errors import bad_request, unprocessable
from physio.models import Visit, VisitAiGeneration
from physio.schemas import (
    Page, VisitCreate, VisitOut, VisitRecommendationsOut, VisitRecommendationsUpdate, VisitUpdate
)
from physio.services import validation
from physio.services.etag import validate_token, write_if_current
from physio.services.ownership import get_owned_generation, get_owned_patient, get_owned_visit
from physio.time_utils import ensure_utc, utc_now

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100

AiMetadata = Dict[uuid.UUID, Tuple[int, Optional[uuid.UUID]]]


def _ensure_any_content(*values: Optional[str]) -> None:
    if not any(values):
        raise unprocessable("visit_content_required")


async def ai_metadata(db: AsyncSession, visit_ids: Iterable[uuid.UUID]) -> AiMetadata:
    """방문별 (생성 횟수, 최신 생성 id)."""
    ids = list(visit_ids)
    if not ids:
        return {}
    rows = (
        await db.execute(
            select(VisitAiGeneration.visit_id, VisitAiGeneration.id)
            .where(VisitAiGeneration.visit_id.in_(ids))
            .order_by(VisitAiGeneration.created_at.desc(), VisitAiGeneration.id.desc())
        )
    ).all()

    meta: AiMetadata = {}
    for visit_id, generation_id in rows:
        count, latest = meta.get(visit_id, (0, generation_id))
        meta[visit_id] = (count + 1, latest)
    return meta


def to_visit_out(visit: Visit, meta: AiMetadata, include_recommendations: bool = True) -> VisitOut:
    out = VisitOut.model_validate(visit)
    count, latest = meta.get(visit.id, (0, None))
    out.ai_generation_count = count
    out.latest_ai_generation_id = latest
    if not include_recommendations:
        out.recommendations = None
    return out


async def create_visit(
    db: AsyncSession, therapist_id: uuid.UUID, patient_id: uuid.UUID, cmd: VisitCreate
) -> VisitOut:
    await get_owned_patient(db, therapist_id, patient_id)

    visit_date = validation.normalize_visit_date(cmd.visit_date)
    interview = validation.normalize_content(cmd.interview, "interview")
    description = validation.normalize_content(cmd.description, "description")
    recommendations = validation.normalize_content(cmd.recommendations, "recommendations")
    _ensure_any_content(interview, description, recommendations)

    visit = Visit(
        patient_id=patient_id,
        visit_date=visit_date,
        interview=interview,
        description=description,
        recommendations=recommendations,
        recommendations_generated_by_ai=False,
    )
    db.add(visit)
    await db.commit()
    await db.refresh(visit)

    logger.info("visit_created", visit_id=str(visit.id), patient_id=str(patient_id))
    return to_visit_out(visit, {})


async def list_visits(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    patient_id: uuid.UUID,
    page: int,
    page_size: int,
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    include_recommendations: bool,
    order: Optional[str],
) -> Page[VisitOut]:
    if page < 1 or page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise bad_request("invalid_pagination")
    date_from = ensure_utc(date_from) if date_from else None
    date_to = ensure_utc(date_to) if date_to else None
    if date_from and date_to and date_to < date_from:
        raise bad_request("invalid_date_range")
    direction = validation.normalize_order(order)

    await get_owned_patient(db, therapist_id, patient_id)

    filters = [Visit.patient_id == patient_id]
    if date_from:
        filters.append(Visit.visit_date >= date_from)
    if date_to:
        filters.append(Visit.visit_date <= date_to)

    total = (await db.execute(select(func.count(Visit.id)).where(*filters))).scalar_one()

    ordering = (
        (Visit.visit_date.asc(), Visit.id.asc())
        if direction == "asc"
        else (Visit.visit_date.desc(), Visit.id.desc())
    )
    visits = (
        await db.execute(
            select(Visit)
            .where(*filters)
            .order_by(*ordering)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    meta = await ai_metadata(db, [v.id for v in visits])
    return Page[VisitOut](
        items=[to_visit_out(v, meta, include_recommendations) for v in visits],
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=validation.total_pages(total, page_size),
    )


async def get_visit(db: AsyncSession, therapist_id: uuid.UUID, visit_id: uuid.UUID) -> VisitOut:
    visit = await get_owned_visit(db, therapist_id, visit_id)
    return to_visit_out(visit, await ai_metadata(db, [visit.id]))


async def update_visit(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    cmd: VisitUpdate,
    if_match: Optional[str],
) -> VisitOut:
    visit = await get_owned_visit(db, therapist_id, visit_id)
    validate_token(if_match, visit.updated_at)

    # None 은 "변경 없음", 빈 문자열은 "삭제"
    visit_date = (
        validation.normalize_visit_date(cmd.visit_date)
        if cmd.visit_date is not None
        else ensure_utc(visit.visit_date)
    )
    interview = (
        validation.normalize_content(cmd.interview, "interview")
        if cmd.interview is not None
        else visit.interview
    )
    description = (
        validation.normalize_content(cmd.description, "description")
        if cmd.description is not None
        else visit.description
    )
    _ensure_any_content(interview, description, visit.recommendations)

    unchanged = (
        visit_date == ensure_utc(visit.visit_date)
        and interview == visit.interview
        and description == visit.description
    )
    if unchanged:
        raise bad_request("no_changes_submitted")

    await write_if_current(
        db, visit, {"visit_date": visit_date, "interview": interview, "description": description}
    )
    logger.info("visit_updated", visit_id=str(visit.id))
    return to_visit_out(visit, await ai_metadata(db, [visit.id]))


async def delete_visit(db: AsyncSession, therapist_id: uuid.UUID, visit_id: uuid.UUID) -> None:
    visit = await get_owned_visit(db, therapist_id, visit_id)
    await db.delete(visit)
    await db.commit()
    logger.info("visit_deleted", visit_id=str(visit_id))


async def save_recommendations(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    cmd: VisitRecommendationsUpdate,
    if_match: Optional[str],
) -> VisitRecommendationsOut:
    recommendations = validation.normalize_content(cmd.recommendations, "recommendations")
    if not recommendations:
        raise unprocessable("recommendations_required")
    if cmd.ai_generated and cmd.source_generation_id is None:
        raise unprocessable("source_generation_required")
    if not cmd.ai_generated and cmd.source_generation_id is not None:
        raise unprocessable("source_generation_not_allowed")

    visit = await get_owned_visit(db, therapist_id, visit_id)
    validate_token(if_match, visit.updated_at)

    if cmd.source_generation_id is not None:
        await get_owned_generation(db, therapist_id, visit.id, cmd.source_generation_id)

    # AI 수락은 매번 generated_at 을 새로 찍으므로 항상 변경으로 본다
    unchanged = (
        not cmd.ai_generated
        and recommendations == visit.recommendations
        and not visit.recommendations_generated_by_ai
    )
    if unchanged:
        raise bad_request("no_changes_submitted")

    await write_if_current(
        db,
        visit,
        {
            "recommendations": recommendations,
            "recommendations_generated_by_ai": cmd.ai_generated,
            "recommendations_generated_at": utc_now() if cmd.ai_generated else None,
        },
    )
    logger.info(
        "visit_recommendations_saved",
        visit_id=str(visit.id),
        ai_generated=cmd.ai_generated,
        source_generation_id=str(cmd.source_generation_id) if cmd.source_generation_id else None,
    )
    return VisitRecommendationsOut.model_validate(visit)
