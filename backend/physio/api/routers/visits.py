from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from physio.api.deps import get_current_therapist, get_if_match
from physio.db import get_db
from physio.schemas import (
    Page, VisitCreate, VisitOut, VisitRecommendationsOut, VisitRecommendationsUpdate, VisitUpdate
)
from physio.services import visit_service
from physio.services.auth_service import TherapistIdentity

router = APIRouter(tags=["visits"])


@router.post("/patients/{patient_id}/visits", response_model=VisitOut, status_code=status.HTTP_201_CREATED)
async def create_visit(
    patient_id: uuid.UUID,
    payload: VisitCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    visit = await visit_service.create_visit(db, current.therapist_id, patient_id, payload)
    response.headers["ETag"] = visit.etag
    response.headers["Location"] = f"/api/visits/{visit.id}"
    return visit


@router.get("/patients/{patient_id}/visits", response_model=Page[VisitOut])
async def list_visits(
    patient_id: uuid.UUID,
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    include_recommendations: bool = Query(True, alias="includeRecommendations"),
    order: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    return await visit_service.list_visits(
        db,
        current.therapist_id,
        patient_id,
        page,
        page_size,
        date_from,
        date_to,
        include_recommendations,
        order,
    )


@router.get("/visits/{visit_id}", response_model=VisitOut)
async def get_visit(
    visit_id: uuid.UUID,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    visit = await visit_service.get_visit(db, current.therapist_id, visit_id)
    response.headers["ETag"] = visit.etag
    return visit


@router.patch("/visits/{visit_id}", response_model=VisitOut)
async def update_visit(
    visit_id: uuid.UUID,
    payload: VisitUpdate,
    response: Response,
    if_match: Optional[str] = Depends(get_if_match),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    visit = await visit_service.update_visit(db, current.therapist_id, visit_id, payload, if_match)
    response.headers["ETag"] = visit.etag
    return visit


@router.delete("/visits/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_visit(
    visit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    await visit_service.delete_visit(db, current.therapist_id, visit_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# 치료사가 확정한 추천 저장 (AI 초안을 채택한 경우 sourceGenerationId 필수)
@router.put("/visits/{visit_id}/recommendations", response_model=VisitRecommendationsOut)
async def save_recommendations(
    visit_id: uuid.UUID,
    payload: VisitRecommendationsUpdate,
    response: Response,
    if_match: Optional[str] = Depends(get_if_match),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    state = await visit_service.save_recommendations(db, current.therapist_id, visit_id, payload, if_match)
    response.headers["ETag"] = state.etag
    return state
