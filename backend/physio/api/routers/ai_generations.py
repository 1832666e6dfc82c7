from __future__ import annotations
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from physio.api.deps import get_correlation_id, get_current_therapist, get_provider, get_settings_dep
from physio.config import Settings
from physio.db import get_db
from physio.schemas import (
    Page, VisitAiGenerationCommand, VisitAiGenerationCreated, VisitAiGenerationDetail, VisitAiGenerationListItem
)
from physio.services import ai_generation_service
from physio.services.auth_service import TherapistIdentity
from physio.services.openai_client import ChatCompletionProvider

router = APIRouter(prefix="/visits/{visit_id}", tags=["ai-generations"])


@router.post("/ai-generation", response_model=VisitAiGenerationCreated, status_code=status.HTTP_201_CREATED)
async def generate_recommendations(
    visit_id: uuid.UUID,
    response: Response,
    payload: Optional[VisitAiGenerationCommand] = None,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
    settings: Settings = Depends(get_settings_dep),
    provider: ChatCompletionProvider = Depends(get_provider),
    correlation_id: str = Depends(get_correlation_id),
):
    """방문 서술을 바탕으로 AI 추천 초안을 만들고 이력에 남긴다. 방문 자체는 수정하지 않는다."""
    created = await ai_generation_service.generate(
        db,
        provider,
        settings,
        current.therapist_id,
        visit_id,
        payload or VisitAiGenerationCommand(),
        correlation_id,
    )
    response.headers["Location"] = f"/api/visits/{visit_id}/ai-generations/{created.generation_id}"
    return created


@router.get("/ai-generations", response_model=Page[VisitAiGenerationListItem])
async def list_generations(
    visit_id: uuid.UUID,
    page: int = Query(1),
    page_size: int = Query(10, alias="pageSize"),
    order: Optional[str] = Query("desc"),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    return await ai_generation_service.list_generations(
        db, current.therapist_id, visit_id, page, page_size, order
    )


@router.get("/ai-generations/{generation_id}", response_model=VisitAiGenerationDetail)
async def get_generation(
    visit_id: uuid.UUID,
    generation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    return await ai_generation_service.get_generation(db, current.therapist_id, visit_id, generation_id)
