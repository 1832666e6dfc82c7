from __future__ import annotations
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from physio.api.deps import get_current_therapist, get_if_match
from physio.db import get_db
from physio.schemas import Page, PatientCreate, PatientDetails, PatientListItem, PatientOut, PatientUpdate
from physio.services import patient_service
from physio.services.auth_service import TherapistIdentity

router = APIRouter(prefix="/patients", tags=["patients"])


# [1] 환자 등록
@router.post("", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
async def create_patient(
    payload: PatientCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    patient = await patient_service.create_patient(db, current.therapist_id, payload)
    response.headers["ETag"] = patient.etag
    response.headers["Location"] = f"/api/patients/{patient.id}"
    return patient


# [2] 환자 목록 (검색/정렬/페이지)
@router.get("", response_model=Page[PatientListItem])
async def list_patients(
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    order: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    return await patient_service.list_patients(
        db, current.therapist_id, page, page_size, search, sort, order
    )


# [3] 환자 상세 (+ 최근 방문)
@router.get("/{patient_id}", response_model=PatientDetails)
async def get_patient(
    patient_id: uuid.UUID,
    response: Response,
    include_visits: bool = Query(False, alias="includeVisits"),
    visits_limit: Optional[int] = Query(None, alias="visitsLimit"),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    details = await patient_service.get_patient(
        db, current.therapist_id, patient_id, include_visits, visits_limit
    )
    response.headers["ETag"] = details.etag
    return details


# [4] 환자 수정 (If-Match 필수)
@router.patch("/{patient_id}", response_model=PatientOut)
async def update_patient(
    patient_id: uuid.UUID,
    payload: PatientUpdate,
    response: Response,
    if_match: Optional[str] = Depends(get_if_match),
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    patient = await patient_service.update_patient(db, current.therapist_id, patient_id, payload, if_match)
    response.headers["ETag"] = patient.etag
    return patient


# [5] 환자 삭제 (방문/AI 이력까지 함께 삭제)
@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: TherapistIdentity = Depends(get_current_therapist),
):
    await patient_service.delete_patient(db, current.therapist_id, patient_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
