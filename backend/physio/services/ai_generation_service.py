from __future__ import annotations
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Mapping, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from physio.config import Settings
from physio.errors import ApiError, bad_request, unprocessable
from physio.models import Profile, Visit, VisitAiGeneration
from physio.schemas import (
    Page,
    VisitAiGenerationCommand,
    VisitAiGenerationCreated,
    VisitAiGenerationDetail,
    VisitAiGenerationListItem,
)
from physio.services import validation
from physio.services.openai_client import ChatCompletionProvider
from physio.services.ownership import get_owned_generation, get_owned_visit
from physio.services.prompt_builder import build_prompt

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 50
PREVIEW_LIMIT = 320
NOT_OWNED = "visit_not_owned"


# ---- 입력 정규화 ----

def ensure_minimum_context(visit: Visit, minimum: int) -> None:
    if minimum <= 0:
        raise ApiError(500, "generation_configuration_invalid")
    total = len(visit.interview or "") + len(visit.description or "")
    if total < minimum:
        raise unprocessable("insufficient_visit_context")


def resolve_model(requested: Optional[str], fallback: str) -> str:
    if requested is None or not requested.strip():
        return fallback
    model = requested.strip()
    if validation.contains_markup(model):
        raise unprocessable("model_override_invalid")
    return model


def resolve_temperature(requested: Optional[float], settings: Settings) -> float:
    if requested is None:
        return settings.ai_default_temperature
    clamped = min(max(requested, settings.ai_min_temperature), settings.ai_max_temperature)
    return float(Decimal(str(clamped)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def normalize_prompt_overrides(
    overrides: Optional[Mapping[str, Optional[str]]], limit: int
) -> Dict[str, str]:
    """키는 대소문자 구분 없이 마지막 값이 이긴다. 빈 키/값은 버린다."""
    sanitized: Dict[str, str] = {}
    canonical: Dict[str, str] = {}
    for key, value in (overrides or {}).items():
        if key is None or not key.strip():
            continue
        normalized = validation.normalize_content(value, "prompt_override")
        if not normalized:
            continue
        if len(normalized) > limit:
            raise unprocessable("prompt_override_too_long")
        if validation.contains_markup(normalized):
            raise unprocessable("prompt_override_invalid")

        name = key.strip()
        previous = canonical.get(name.lower())
        if previous is not None:
            sanitized.pop(previous)
        canonical[name.lower()] = name
        sanitized[name] = normalized
    return sanitized


def build_preview(text: str) -> str:
    if not text or not text.strip():
        return ""
    flattened = " ".join(text.replace("\r\n", "\n").replace("\r", "\n").split("\n")).strip()
    if len(flattened) <= PREVIEW_LIMIT:
        return flattened
    return flattened[: PREVIEW_LIMIT - 3].rstrip() + "..."


# ---- 유스케이스 ----

async def generate(
    db: AsyncSession,
    provider: ChatCompletionProvider,
    settings: Settings,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    cmd: VisitAiGenerationCommand,
    correlation_id: str,
) -> VisitAiGenerationCreated:
    source_id = cmd.regenerate_from_generation_id
    if source_id is not None and source_id.int == 0:
        raise bad_request("invalid_generation_id")

    log = logger.bind(therapist_id=str(therapist_id), visit_id=str(visit_id))
    started = time.perf_counter()

    visit = await get_owned_visit(db, therapist_id, visit_id, not_owned_code=NOT_OWNED)
    ensure_minimum_context(visit, settings.ai_min_context_length)

    if source_id is not None:
        await get_owned_generation(db, therapist_id, visit.id, source_id)

    profile = await db.get(Profile, therapist_id)
    fallback_model = (profile.preferred_ai_model if profile else None) or settings.ai_default_model

    model = resolve_model(cmd.model, fallback_model)
    temperature = resolve_temperature(cmd.temperature, settings)
    overrides = normalize_prompt_overrides(cmd.prompt_overrides, settings.ai_prompt_override_limit)
    prompt = build_prompt(visit.interview, visit.description, visit.recommendations, overrides)

    log.info("ai_generation_dispatch", model=model, temperature=temperature, prompt_length=len(prompt))
    ai_response = await provider.invoke(prompt, model, temperature, correlation_id)

    generation = VisitAiGeneration(
        visit_id=visit.id,
        therapist_id=therapist_id,
        prompt=prompt,
        ai_response=ai_response,
        model_used=model,
        temperature=temperature,
    )
    db.add(generation)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("ai_generation_persistence_failed", error=str(e))
        raise ApiError(502, "ai_generation_persistence_failed")
    await db.refresh(generation)

    log.info(
        "ai_generation_completed",
        generation_id=str(generation.id),
        model=model,
        elapsed_ms=round((time.perf_counter() - started) * 1000),
    )
    return VisitAiGenerationCreated(
        generation_id=generation.id,
        model=generation.model_used,
        temperature=generation.temperature,
        prompt=generation.prompt,
        ai_response=generation.ai_response,
        recommendations_preview=build_preview(generation.ai_response),
        created_at=generation.created_at,
    )


def _list_item(row: VisitAiGeneration) -> VisitAiGenerationListItem:
    return VisitAiGenerationListItem(
        id=row.id,
        model=row.model_used,
        temperature=row.temperature,
        prompt=row.prompt,
        ai_response=row.ai_response,
        created_at=row.created_at,
    )


async def list_generations(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    page: int,
    page_size: int,
    order: Optional[str],
) -> Page[VisitAiGenerationListItem]:
    if page < 1 or page_size < 1:
        raise bad_request("invalid_pagination")
    page_size = min(page_size, MAX_PAGE_SIZE)
    direction = validation.normalize_order(order)

    await get_owned_visit(db, therapist_id, visit_id, not_owned_code=NOT_OWNED)

    total = (
        await db.execute(
            select(func.count(VisitAiGeneration.id)).where(VisitAiGeneration.visit_id == visit_id)
        )
    ).scalar_one()

    if direction == "asc":
        ordering = (VisitAiGeneration.created_at.asc(), VisitAiGeneration.id.asc())
    else:
        ordering = (VisitAiGeneration.created_at.desc(), VisitAiGeneration.id.desc())

    rows = (
        await db.execute(
            select(VisitAiGeneration)
            .where(VisitAiGeneration.visit_id == visit_id)
            .order_by(*ordering)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    logger.info(
        "ai_generation_list",
        visit_id=str(visit_id),
        count=len(rows),
        total=total,
        page=page,
        page_size=page_size,
        order=direction,
    )
    return Page[VisitAiGenerationListItem](
        items=[_list_item(r) for r in rows],
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=validation.total_pages(total, page_size),
    )


async def get_generation(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    visit_id: uuid.UUID,
    generation_id: uuid.UUID,
) -> VisitAiGenerationDetail:
    if generation_id.int == 0:
        raise bad_request("invalid_generation_id")
    await get_owned_visit(db, therapist_id, visit_id, not_owned_code=NOT_OWNED)
    row = await get_owned_generation(db, therapist_id, visit_id, generation_id)
    return VisitAiGenerationDetail(
        **_list_item(row).model_dump(),
        visit_id=row.visit_id,
        therapist_id=row.therapist_id,
    )
