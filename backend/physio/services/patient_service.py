from __future__ import annotations
import uuid
from datetime import date
from typing import Optional, Tuple

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from physio.errors import bad_request, conflict, not_found
from physio.models import Patient, Profile, Visit
from physio.schemas import (
    Page, PatientCreate, PatientDetails, PatientListItem, PatientOut, PatientUpdate
)
from physio.services import validation
from physio.services.etag import validate_token, write_if_current
from physio.services.ownership import get_owned_patient
from physio.services.visit_service import ai_metadata, to_visit_out

logger = structlog.get_logger(__name__)

SORT_LAST_NAME = "lastName"
SORT_CREATED_AT = "createdAt"
SORT_LATEST_VISIT = "latestVisitDate"

DEFAULT_VISITS_LIMIT = 5
MAX_VISITS_LIMIT = 20
MAX_PAGE_SIZE = 100


def _normalize_sort(sort: Optional[str]) -> str:
    candidate = (sort or "").strip()
    if candidate in (SORT_CREATED_AT, SORT_LATEST_VISIT):
        return candidate
    return SORT_LAST_NAME


async def _ensure_not_duplicate(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    first_name: str,
    last_name: str,
    date_of_birth: Optional[date],
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    q = select(Patient.id).where(
        Patient.therapist_id == therapist_id,
        func.lower(Patient.first_name) == first_name.lower(),
        func.lower(Patient.last_name) == last_name.lower(),
    )
    if date_of_birth is None:
        q = q.where(Patient.date_of_birth.is_(None))
    else:
        q = q.where(Patient.date_of_birth == date_of_birth)
    if exclude_id is not None:
        q = q.where(Patient.id != exclude_id)

    if (await db.execute(q.limit(1))).first() is not None:
        raise conflict("patient_duplicate")


def _normalized(cmd: PatientCreate) -> Tuple[str, str, Optional[date]]:
    return (
        validation.normalize_name(cmd.first_name, "first_name"),
        validation.normalize_name(cmd.last_name, "last_name"),
        validation.normalize_date_of_birth(cmd.date_of_birth),
    )


async def create_patient(db: AsyncSession, therapist_id: uuid.UUID, cmd: PatientCreate) -> PatientOut:
    first_name, last_name, dob = _normalized(cmd)

    # 프로필은 가입 시 IdP 쪽 훅이 만든다.
    if await db.get(Profile, therapist_id) is None:
        raise not_found("profile_missing")

    await _ensure_not_duplicate(db, therapist_id, first_name, last_name, dob)

    patient = Patient(
        therapist_id=therapist_id,
        first_name=first_name,
        last_name=last_name,
        date_of_birth=dob,
    )
    db.add(patient)
    try:
        await db.commit()
    except IntegrityError:
        # 동시 생성으로 유니크 인덱스에 걸린 경우
        await db.rollback()
        raise conflict("patient_duplicate")
    await db.refresh(patient)

    logger.info("patient_created", patient_id=str(patient.id), therapist_id=str(therapist_id))
    return PatientOut.model_validate(patient)


async def list_patients(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    page: int,
    page_size: int,
    search: Optional[str],
    sort: Optional[str],
    order: Optional[str],
) -> Page[PatientListItem]:
    if page < 1:
        raise bad_request("page_invalid")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise bad_request("page_size_invalid")

    sort_key = _normalize_sort(sort)
    direction = validation.normalize_order(order, "asc" if sort_key == SORT_LAST_NAME else "desc")
    term = validation.normalize_search(search)

    stats = (
        select(
            Visit.patient_id.label("patient_id"),
            func.max(Visit.visit_date).label("latest_visit_date"),
            func.count(Visit.id).label("visit_count"),
        )
        .group_by(Visit.patient_id)
        .subquery()
    )

    filters = [Patient.therapist_id == therapist_id]
    if term:
        filters.append(
            or_(
                Patient.first_name.icontains(term, autoescape=True),
                Patient.last_name.icontains(term, autoescape=True),
            )
        )

    total = (await db.execute(select(func.count(Patient.id)).where(*filters))).scalar_one()

    ascending = direction == "asc"
    if sort_key == SORT_CREATED_AT:
        primary = [Patient.created_at.asc() if ascending else Patient.created_at.desc()]
    elif sort_key == SORT_LATEST_VISIT:
        col = stats.c.latest_visit_date
        primary = [col.asc().nulls_first() if ascending else col.desc().nulls_last()]
    else:
        primary = [
            func.lower(Patient.last_name).asc() if ascending else func.lower(Patient.last_name).desc(),
        ]
    tie_breaks = [
        func.lower(Patient.last_name).asc(),
        func.lower(Patient.first_name).asc(),
        Patient.created_at.asc(),
        Patient.id.asc(),
    ]

    q = (
        select(Patient, stats.c.latest_visit_date, stats.c.visit_count)
        .outerjoin(stats, stats.c.patient_id == Patient.id)
        .where(*filters)
        .order_by(*primary, *tie_breaks)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = (await db.execute(q)).all()

    items = []
    for patient, latest, count in rows:
        base = PatientOut.model_validate(patient).model_dump()
        items.append(
            PatientListItem.model_validate(
                {**base, "latest_visit_date": latest, "visit_count": count or 0}
            )
        )

    return Page[PatientListItem](
        items=items,
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=validation.total_pages(total, page_size),
    )


async def get_patient(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    patient_id: uuid.UUID,
    include_visits: bool = False,
    visits_limit: Optional[int] = None,
) -> PatientDetails:
    if visits_limit is not None and not 1 <= visits_limit <= MAX_VISITS_LIMIT:
        raise bad_request("visits_limit_invalid")

    patient = await get_owned_patient(db, therapist_id, patient_id)
    details = PatientDetails.model_validate(PatientOut.model_validate(patient).model_dump())

    if include_visits:
        q = (
            select(Visit)
            .where(Visit.patient_id == patient.id)
            .order_by(Visit.visit_date.desc(), Visit.id.desc())
            .limit(visits_limit or DEFAULT_VISITS_LIMIT)
        )
        visits = (await db.execute(q)).scalars().all()
        meta = await ai_metadata(db, [v.id for v in visits])
        details.visits = [to_visit_out(v, meta) for v in visits]

    return details


async def update_patient(
    db: AsyncSession,
    therapist_id: uuid.UUID,
    patient_id: uuid.UUID,
    cmd: PatientUpdate,
    if_match: Optional[str],
) -> PatientOut:
    patient = await get_owned_patient(db, therapist_id, patient_id)
    validate_token(if_match, patient.updated_at)

    first_name, last_name, dob = _normalized(cmd)
    if (first_name, last_name, dob) == (patient.first_name, patient.last_name, patient.date_of_birth):
        raise bad_request("no_changes_submitted")

    await _ensure_not_duplicate(db, therapist_id, first_name, last_name, dob, exclude_id=patient.id)

    try:
        await write_if_current(
            db, patient, {"first_name": first_name, "last_name": last_name, "date_of_birth": dob}
        )
    except IntegrityError:
        await db.rollback()
        raise conflict("patient_duplicate")

    logger.info("patient_updated", patient_id=str(patient.id))
    return PatientOut.model_validate(patient)


async def delete_patient(db: AsyncSession, therapist_id: uuid.UUID, patient_id: uuid.UUID) -> None:
    patient = await get_owned_patient(db, therapist_id, patient_id)
    await db.delete(patient)
    await db.commit()
    logger.info("patient_deleted", patient_id=str(patient_id), therapist_id=str(therapist_id))
